"""
Data types for the item collection.

Items are modelled as a tagged variant: one dataclass per category, each
carrying only the attributes that category allows. A flat field mapping
(what an editor or the CLI produces) is turned into the right variant by
``item_from_fields`` after validation.
"""

import re
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Iterable, Optional


class Category(str, Enum):
    """The fixed kind of an item, set at creation."""
    PROMPT = "prompt"
    AGENT = "agent"
    SKILL = "skill"
    COMMAND = "command"

    @property
    def display_name(self) -> str:
        return self.value.capitalize() + "s"

    @classmethod
    def parse(cls, value: "str | Category") -> "Category":
        """Parse a category name (case-insensitive). Raises ValueError."""
        if isinstance(value, Category):
            return value
        return cls(str(value).strip().lower())

    def __str__(self) -> str:
        return self.value


PERMISSION_MODES = ("default", "acceptEdits", "bypassPermissions", "plan")

# Known model aliases; any other non-blank identifier is accepted too
MODEL_ALIASES = ("sonnet", "opus", "haiku", "inherit")

# Category-specific attributes, all optional
OPTIONAL_ATTRIBUTES = (
    "model", "tool_list", "allowed_tools", "argument_hint",
    "permission_mode", "skill_refs",
)
# Fields the system manages; never accepted from callers
SYSTEM_FIELDS = ("id", "version", "created_at", "updated_at")


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.ffffff (no suffix)."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


def normalize_name(name: str) -> str:
    """Uniqueness key for item names: trimmed and casefolded."""
    return name.strip().casefold()


def normalize_tags(tags: "Iterable[str] | str | None") -> tuple[str, ...]:
    """
    Normalize tags to a sorted, de-duplicated tuple.

    Accepts an iterable of strings or a comma-joined string. Tags are
    trimmed and casefolded; commas inside a tag split it, since tags are
    stored comma-joined.
    """
    if tags is None:
        return ()
    if isinstance(tags, str):
        tags = [tags]
    result: set[str] = set()
    for tag in tags:
        for part in str(tag).split(","):
            part = part.strip().casefold()
            if part:
                result.add(part)
    return tuple(sorted(result))


def tags_acceptable(tags: Any) -> bool:
    """True for None, a string, or a list/tuple/set of strings."""
    if tags is None or isinstance(tags, str):
        return True
    if not isinstance(tags, (list, tuple, set, frozenset)):
        return False
    return all(isinstance(tag, str) for tag in tags)


_TOKEN_RE = re.compile(r"\w+")


def tokenize(text: Optional[str]) -> str:
    """Search terms for a text: casefolded word runs joined by single spaces."""
    if not text:
        return ""
    return " ".join(_TOKEN_RE.findall(text.casefold()))


def blank(value: Any) -> bool:
    """True for None and for strings that are empty after trimming."""
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass(frozen=True)
class Item:
    """
    A stored artifact. Use one of the category subclasses.

    ``category`` is a class attribute: changing it means a different type,
    which is why it can't be patched.
    """
    category: ClassVar[Category]

    name: str
    content: str
    description: Optional[str] = None
    tags: tuple[str, ...] = ()
    id: Optional[int] = None
    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_fields(self) -> dict[str, Any]:
        """Flat field mapping including ``category`` (tags as a list)."""
        data = asdict(self)
        data["category"] = self.category.value
        data["tags"] = list(self.tags)
        return data

    def editable_fields(self) -> dict[str, Any]:
        """The fields a caller may set, without system-managed ones."""
        data = self.to_fields()
        for name in SYSTEM_FIELDS:
            data.pop(name, None)
        return data

    @property
    def tags_text(self) -> str:
        return ",".join(self.tags)

    def __str__(self) -> str:
        return f"{self.category.value}:{self.id} {self.name!r} v{self.version}"


@dataclass(frozen=True)
class Prompt(Item):
    category: ClassVar[Category] = Category.PROMPT


@dataclass(frozen=True)
class Agent(Item):
    category: ClassVar[Category] = Category.AGENT

    model: Optional[str] = None
    tool_list: Optional[str] = None
    permission_mode: Optional[str] = None
    skill_refs: Optional[str] = None


@dataclass(frozen=True)
class Skill(Item):
    category: ClassVar[Category] = Category.SKILL

    allowed_tools: Optional[str] = None


@dataclass(frozen=True)
class Command(Item):
    category: ClassVar[Category] = Category.COMMAND

    allowed_tools: Optional[str] = None
    argument_hint: Optional[str] = None
    model: Optional[str] = None


ITEM_TYPES: dict[Category, type[Item]] = {
    Category.PROMPT: Prompt,
    Category.AGENT: Agent,
    Category.SKILL: Skill,
    Category.COMMAND: Command,
}


def clean_fields(
    field_set: dict[str, Any],
    required: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Normalize a flat field mapping without judging it.

    Strings are trimmed where it matters (name), blank optional attributes
    become None, and tags are normalized. Fields named in ``required`` keep
    their blank values so the validator reports them as empty rather than
    missing. Unknown keys and tags of the wrong type are kept as they are
    so the validator can report them.
    """
    data = dict(field_set)
    keep = set(required)
    if isinstance(data.get("name"), str):
        data["name"] = data["name"].strip()
    for name in ("description",) + OPTIONAL_ATTRIBUTES:
        if name in data and name not in keep and blank(data[name]):
            data[name] = None
    if "tags" in data and tags_acceptable(data["tags"]):
        data["tags"] = normalize_tags(data["tags"])
    return data


def item_from_fields(category: Category, data: dict[str, Any]) -> Item:
    """Build the category's item type from a validated field mapping."""
    cls = ITEM_TYPES[category]
    names = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names and v is not None}
    if "tags" in kwargs:
        kwargs["tags"] = normalize_tags(kwargs["tags"])
    return cls(**kwargs)


@dataclass(frozen=True)
class Violation:
    """One validation problem: the offending field and a reason code."""
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable snapshot of an item as it was at ``version``."""
    item_id: int
    version: int
    snapshot: dict[str, Any]
    recorded_at: str

    def to_item(self) -> Item:
        """Rebuild the item value the snapshot describes."""
        category = Category.parse(self.snapshot["category"])
        return item_from_fields(category, self.snapshot)


@dataclass(frozen=True)
class SearchHit:
    """A query result: which item matched, and on which field."""
    item_id: int
    matched_field: str

