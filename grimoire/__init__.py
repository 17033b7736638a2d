"""
grimoire: a personal library of prompts, agents, skills and commands.

Quick start:
    from grimoire import Repository

    with Repository("grimoire.db") as repo:
        item = repo.create({"category": "prompt", "name": "review", "content": "..."})
        repo.update(item.id, item.version, {"content": "Review this diff."})
        for hit in repo.query("review"):
            print(hit.item_id, hit.matched_field)
"""

from .errors import (
    DuplicateName,
    GrimoireError,
    ImmutableField,
    IndexDesync,
    NotFound,
    StorageFailure,
    SuggestionError,
    UnsupportedExport,
    ValidationFailed,
    VersionConflict,
)
from .repository import Repository
from .types import (
    Agent,
    Category,
    Command,
    HistoryEntry,
    Item,
    Prompt,
    SearchHit,
    Skill,
    Violation,
)
from .validation import validate

__version__ = "0.1.0"
__all__ = [
    "Agent",
    "Category",
    "Command",
    "DuplicateName",
    "GrimoireError",
    "HistoryEntry",
    "ImmutableField",
    "IndexDesync",
    "Item",
    "NotFound",
    "Prompt",
    "Repository",
    "SearchHit",
    "Skill",
    "StorageFailure",
    "SuggestionError",
    "UnsupportedExport",
    "ValidationFailed",
    "VersionConflict",
    "Violation",
    "validate",
]
