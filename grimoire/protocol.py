"""
Protocol definitions for the item repository.

RepositoryProtocol is the contract collaborators (CLI, exporters, editor
front-ends) program against. ``Repository`` implements it; tests and
alternative front-ends may substitute anything with the same shape.
"""

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from .types import Category, HistoryEntry, Item, SearchHit


@runtime_checkable
class RepositoryProtocol(Protocol):
    """
    The public interface for item operations.

    Implemented by:
    - Repository (local SQLite database)
    """

    # -- Write operations --

    def create(self, candidate: "Mapping[str, Any] | Item") -> Item: ...

    def update(self, id: int, base_version: int, patch: Mapping[str, Any]) -> Item: ...

    def restore(
        self,
        id: int,
        target_version: int,
        *,
        base_version: Optional[int] = None,
    ) -> Item: ...

    def delete(self, id: int) -> None: ...

    # -- Query operations --

    def get(self, id: int) -> Item: ...

    def list(
        self,
        category: "Category | str | None" = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> "list[Item]": ...

    def query(
        self,
        term: str,
        category: "Category | str | None" = None,
        tag: Optional[str] = None,
    ) -> "list[SearchHit]": ...

    def list_history(self, id: int) -> "list[HistoryEntry]": ...

    def get_history(self, id: int, version: int) -> HistoryEntry: ...

    def count_by_category(self) -> "dict[Category, int]": ...

    def tag_counts(self) -> "list[tuple[str, int]]": ...

    # -- Lifecycle --

    def close(self) -> None: ...
