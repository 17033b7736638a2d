"""
CLI interface for grimoire.

Usage:
    grimoire add prompt review --content "Review this diff for bugs."
    grimoire find review
    grimoire edit 1 --content "Review this diff for bugs and style."
    grimoire history 1
    grimoire restore 1 1
"""

import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from typing_extensions import Annotated

from .config import GrimoireConfig, load_or_create_config
from .errors import GrimoireError, ValidationFailed
from .export import ClaudeExporter, render_frontmatter
from .logging_config import configure_quiet_mode, enable_debug_mode, verbose_from_env
from .providers.base import SuggestionAction, get_registry
from .repository import Repository
from .settings import EXPORT_PATH, SUGGESTION_MODEL, SUGGESTION_PROVIDER, SettingsStore
from .suggest import Draft, SuggestionTask
from .types import MODEL_ALIASES, Category, HistoryEntry, Item, SearchHit

# Configure quiet mode by default (suppress verbose library output)
# Set GRIMOIRE_VERBOSE=1 to enable debug mode via environment
if verbose_from_env():
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"grimoire {version('grimoire')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options, reset by main_callback on every invocation
_json_output = False
_store_override: Optional[Path] = None


def _get_json_output() -> bool:
    return _json_output


app = typer.Typer(
    name="grimoire",
    help="A personal library of prompts, agents, skills and commands.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

settings_app = typer.Typer(help="Read and change stored settings.", rich_markup_mode=None)
app.add_typer(settings_app, name="settings")


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="GRIMOIRE_STORE_PATH",
        help="Path to the database file",
    )] = None,
):
    """A personal library of prompts, agents, skills and commands."""
    global _json_output, _store_override
    _json_output = output_json
    _store_override = store


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

CategoryOption = Annotated[
    Optional[Category],
    typer.Option("--category", "-c", help="Only items of this category")
]

TagOption = Annotated[
    Optional[str],
    typer.Option("--tag", "-t", help="Only items with this tag")
]

DescriptionOption = Annotated[
    Optional[str], typer.Option("--description", "-d", help="Short description")
]
ContentOption = Annotated[
    Optional[str], typer.Option("--content", help="Item body ('-' reads stdin)")
]
FileOption = Annotated[
    Optional[Path], typer.Option("--file", "-f", help="Read the item body from a file")
]
TagsOption = Annotated[
    Optional[list[str]], typer.Option("--tag", "-t", help="Tag (repeatable)")
]
ModelOption = Annotated[
    Optional[str], typer.Option(
        "--model",
        help=f"{', '.join(MODEL_ALIASES)} or a full model identifier (agent, command)",
    )
]
ToolsOption = Annotated[
    Optional[str], typer.Option("--tools", help="Tool list (agent)")
]
AllowedToolsOption = Annotated[
    Optional[str], typer.Option("--allowed-tools", help="Allowed tools (skill, command)")
]
ArgumentHintOption = Annotated[
    Optional[str], typer.Option("--argument-hint", help="Argument hint (command)")
]
PermissionModeOption = Annotated[
    Optional[str], typer.Option(
        "--permission-mode",
        help="default, acceptEdits, bypassPermissions or plan (agent)",
    )
]
SkillsOption = Annotated[
    Optional[str], typer.Option("--skills", help="Skills the agent uses (agent)")
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _load_config() -> GrimoireConfig:
    try:
        return load_or_create_config()
    except (OSError, ValueError) as e:
        typer.echo(f"Error: invalid configuration: {e}", err=True)
        raise typer.Exit(1)


def _database_path(config: GrimoireConfig) -> Path:
    if _store_override is not None:
        return _store_override.expanduser()
    return config.database_path


@contextmanager
def _errors_reported() -> Iterator[None]:
    """Turn repository errors into clean messages and exit code 1."""
    try:
        yield
    except ValidationFailed as e:
        typer.echo("Error: validation failed", err=True)
        for violation in e.violations:
            typer.echo(f"  {violation.field}: {violation.reason}", err=True)
        raise typer.Exit(1)
    except GrimoireError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@contextmanager
def _repository() -> Iterator[Repository]:
    config = _load_config()
    with _errors_reported():
        repo = Repository(
            _database_path(config), verify_index=config.verify_index_on_open,
        )
        try:
            yield repo
        finally:
            repo.close()


@contextmanager
def _settings() -> Iterator[SettingsStore]:
    config = _load_config()
    with _errors_reported():
        store = SettingsStore(_database_path(config))
        try:
            yield store
        finally:
            store.close()


def _read_content(content: Optional[str], file: Optional[Path]) -> Optional[str]:
    if content is not None and file is not None:
        typer.echo("Error: use either --content or --file, not both", err=True)
        raise typer.Exit(1)
    if file is not None:
        try:
            return file.expanduser().read_text(encoding="utf-8")
        except OSError as e:
            typer.echo(f"Error: cannot read {file}: {e}", err=True)
            raise typer.Exit(1)
    if content == "-":
        return sys.stdin.read()
    return content


def _field_options(**values: Any) -> dict[str, Any]:
    """Only the options the user actually passed."""
    return {k: v for k, v in values.items() if v is not None}


def _item_to_json(item: Item) -> dict[str, Any]:
    return item.to_fields()


def _format_item_line(item: Item) -> str:
    tags = f"  [{', '.join(item.tags)}]" if item.tags else ""
    return f"{item.id:>4}  {item.category.value:<8} {item.name}  v{item.version}{tags}"


def _format_item(item: Item) -> str:
    """Full item as a frontmatter document."""
    meta = item.to_fields()
    content = meta.pop("content")
    meta["tags"] = list(item.tags) or None
    return render_frontmatter(meta, content)


def _echo_items(items: list[Item]) -> None:
    if _get_json_output():
        typer.echo(json.dumps([_item_to_json(i) for i in items], indent=2))
    elif not items:
        typer.echo("No items.")
    else:
        for item in items:
            typer.echo(_format_item_line(item))


def _echo_item(item: Item) -> None:
    if _get_json_output():
        typer.echo(json.dumps(_item_to_json(item), indent=2))
    else:
        typer.echo(_format_item(item))


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    category: Annotated[Category, typer.Argument(help="prompt, agent, skill or command")],
    name: Annotated[str, typer.Argument(help="Unique name")],
    content: ContentOption = None,
    file: FileOption = None,
    description: DescriptionOption = None,
    tag: TagsOption = None,
    model: ModelOption = None,
    tools: ToolsOption = None,
    allowed_tools: AllowedToolsOption = None,
    argument_hint: ArgumentHintOption = None,
    permission_mode: PermissionModeOption = None,
    skills: SkillsOption = None,
):
    """
    Add a new item.

    \b
    Examples:
        grimoire add prompt review --content "Review this diff."
        grimoire add agent planner -d "Plans work" -f planner.md --model opus
        cat cmd.md | grimoire add command deploy --content - -t ops
    """
    candidate = _field_options(
        category=category.value,
        name=name,
        content=_read_content(content, file),
        description=description,
        tags=tag or None,
        model=model,
        tool_list=tools,
        allowed_tools=allowed_tools,
        argument_hint=argument_hint,
        permission_mode=permission_mode,
        skill_refs=skills,
    )
    with _repository() as repo, _errors_reported():
        item = repo.create(candidate)
    if _get_json_output():
        _echo_item(item)
    else:
        typer.echo(f"Created {item.category.value} {item.id}: {item.name}")


@app.command()
def show(
    id: Annotated[int, typer.Argument(help="Item id")],
    version: Annotated[Optional[int], typer.Option(
        "--version", "-V", help="Show a version from the item's history"
    )] = None,
):
    """Show an item, or one of its past versions."""
    with _repository() as repo, _errors_reported():
        if version is None:
            item = repo.get(id)
        else:
            item = repo.get_history(id, version).to_item()
    _echo_item(item)


@app.command()
def edit(
    id: Annotated[int, typer.Argument(help="Item id")],
    base_version: Annotated[Optional[int], typer.Option(
        "--base-version", "-b",
        help="Version you are editing; the edit fails if the item has moved on",
    )] = None,
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="New name")] = None,
    content: ContentOption = None,
    file: FileOption = None,
    description: DescriptionOption = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t", help="Replace tags (repeatable)"
    )] = None,
    model: ModelOption = None,
    tools: ToolsOption = None,
    allowed_tools: AllowedToolsOption = None,
    argument_hint: ArgumentHintOption = None,
    permission_mode: PermissionModeOption = None,
    skills: SkillsOption = None,
    clear: Annotated[Optional[list[str]], typer.Option(
        "--clear", help="Clear an optional field (repeatable), e.g. --clear model"
    )] = None,
):
    """
    Change fields of an item. Unspecified fields keep their value.

    \b
    Examples:
        grimoire edit 3 --content "New body"
        grimoire edit 3 -b 2 -t review -t git
        grimoire edit 3 --clear model
    """
    patch = _field_options(
        name=name,
        content=_read_content(content, file),
        description=description,
        tags=tag or None,
        model=model,
        tool_list=tools,
        allowed_tools=allowed_tools,
        argument_hint=argument_hint,
        permission_mode=permission_mode,
        skill_refs=skills,
    )
    for field_name in clear or []:
        patch[field_name.replace("-", "_")] = None
    if not patch:
        typer.echo("Error: nothing to change", err=True)
        raise typer.Exit(1)

    with _repository() as repo, _errors_reported():
        if base_version is None:
            base_version = repo.get(id).version
        item = repo.update(id, base_version, patch)
    if _get_json_output():
        _echo_item(item)
    else:
        typer.echo(f"Updated {item.id}: {item.name} (v{item.version})")


@app.command("list")
def list_items(
    category: CategoryOption = None,
    tag: TagOption = None,
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n", help="Maximum items to show"
    )] = None,
):
    """
    List items, most recently updated first.

    \b
    Examples:
        grimoire list
        grimoire list -c agent
        grimoire list -t review -n 5
    """
    with _repository() as repo, _errors_reported():
        items = repo.list(category=category, tag=tag, limit=limit)
    _echo_items(items)


@app.command()
def find(
    term: Annotated[str, typer.Argument(help="Text to look for")],
    category: CategoryOption = None,
    tag: TagOption = None,
):
    """Search names, descriptions, content and tags."""
    with _repository() as repo, _errors_reported():
        hits: list[SearchHit] = repo.query(term, category=category, tag=tag)
        items = {hit.item_id: repo.get(hit.item_id) for hit in hits}

    if _get_json_output():
        typer.echo(json.dumps([
            {"id": hit.item_id, "matched_field": hit.matched_field,
             "name": items[hit.item_id].name,
             "category": items[hit.item_id].category.value}
            for hit in hits
        ], indent=2))
    elif not hits:
        typer.echo("No matches.")
    else:
        for hit in hits:
            item = items[hit.item_id]
            typer.echo(
                f"{item.id:>4}  {item.category.value:<8} {item.name}  ({hit.matched_field})"
            )


@app.command()
def history(
    id: Annotated[int, typer.Argument(help="Item id")],
):
    """List the past versions of an item, newest first."""
    with _repository() as repo, _errors_reported():
        current = repo.get(id)
        entries: list[HistoryEntry] = repo.list_history(id)

    if _get_json_output():
        typer.echo(json.dumps([
            {"version": e.version, "recorded_at": e.recorded_at, "snapshot": e.snapshot}
            for e in entries
        ], indent=2))
        return
    typer.echo(f"v{current.version}  {current.updated_at}  (current)")
    for entry in entries:
        first_line = entry.snapshot.get("content", "").strip().splitlines()
        preview = first_line[0][:60] if first_line else ""
        typer.echo(f"v{entry.version}  {entry.recorded_at}  {preview}")


@app.command()
def restore(
    id: Annotated[int, typer.Argument(help="Item id")],
    version: Annotated[int, typer.Argument(help="Version to bring back")],
):
    """Make a past version current again (as a new version)."""
    with _repository() as repo, _errors_reported():
        item = repo.restore(id, version)
    if _get_json_output():
        _echo_item(item)
    else:
        typer.echo(f"Restored {item.id} to v{version} as v{item.version}")


@app.command()
def delete(
    id: Annotated[int, typer.Argument(help="Item id")],
    yes: Annotated[bool, typer.Option(
        "--yes", "-y", help="Don't ask for confirmation"
    )] = False,
):
    """Delete an item and its whole history."""
    with _repository() as repo, _errors_reported():
        item = repo.get(id)
        if not yes:
            typer.confirm(
                f"Delete {item.category.value} {item.name!r} and its history?", abort=True
            )
        repo.delete(id)
    typer.echo(f"Deleted {id}: {item.name}")


@app.command()
def export(
    id: Annotated[int, typer.Argument(help="Item id")],
    dest: Annotated[Optional[Path], typer.Option(
        "--dest", help="Base directory (default: export_path setting or ~/.claude)"
    )] = None,
):
    """Write an agent, command or skill as a markdown file."""
    config = _load_config()
    if dest is None:
        with _settings() as settings:
            dest = Path(settings.get(EXPORT_PATH) or config.export_path)
    with _repository() as repo, _errors_reported():
        item = repo.get(id)
        path = ClaudeExporter(dest).export(item)
    typer.echo(f"Exported to {path}")


@app.command()
def suggest(
    id: Annotated[int, typer.Argument(help="Item id")],
    action: Annotated[SuggestionAction, typer.Option(
        "--action", "-a", help="What to do with the content"
    )] = SuggestionAction.IMPROVE,
    instruction: Annotated[Optional[str], typer.Option(
        "--instruction", "-i", help="Free-form request (with --action custom)"
    )] = None,
    apply: Annotated[bool, typer.Option(
        "--apply", help="Save the suggestion as a new version"
    )] = False,
    timeout: Annotated[float, typer.Option(
        "--timeout", help="Seconds to wait for the model"
    )] = 120.0,
):
    """Ask an LLM to rewrite an item's content."""
    config = _load_config()
    with _settings() as settings:
        provider_name = settings.get(SUGGESTION_PROVIDER) or config.suggestion.provider
        model = settings.get(SUGGESTION_MODEL) or config.suggestion.model
        api_key = settings.get("api_key")

    with _repository() as repo, _errors_reported():
        item = repo.get(id)
        try:
            provider = get_registry().create(provider_name.lower(), {
                "model": model, "api_key": api_key,
                "max_tokens": config.suggestion.max_tokens,
            })
        except (ValueError, RuntimeError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

        draft = Draft(item.content)
        task = SuggestionTask(
            provider, draft, action, instruction,
            max_tokens=config.suggestion.max_tokens,
        ).start()
        try:
            done = task.wait(timeout)
        except KeyboardInterrupt:
            task.cancel()
            raise
        if not done:
            if task.error is not None:
                raise task.error
            task.cancel()
            typer.echo("Error: suggestion timed out", err=True)
            raise typer.Exit(1)

        applied = apply and task.accept()
        if applied:
            item = repo.update(item.id, item.version, {"content": draft.content})

    if _get_json_output():
        typer.echo(json.dumps({
            "id": item.id, "suggestion": task.result,
            "applied": applied, "version": item.version,
        }, indent=2))
    else:
        typer.echo(task.result)
        if applied:
            typer.echo(f"\nSaved as v{item.version}", err=True)
        elif apply:
            typer.echo("\nNot applied: the draft changed while the model ran", err=True)


@app.command()
def tags():
    """List tags with the number of items using each."""
    with _repository() as repo, _errors_reported():
        counts = repo.tag_counts()
    if _get_json_output():
        typer.echo(json.dumps(dict(counts), indent=2))
    elif not counts:
        typer.echo("No tags.")
    else:
        for tag_name, count in counts:
            typer.echo(f"{count:>4}  {tag_name}")


@app.command()
def stats():
    """Show item counts per category."""
    with _repository() as repo, _errors_reported():
        counts = repo.count_by_category()
        store = repo.path
    if _get_json_output():
        typer.echo(json.dumps({c.value: n for c, n in counts.items()}, indent=2))
        return
    for category, count in counts.items():
        typer.echo(f"{category.display_name:<10} {count}")
    typer.echo(f"{'Total':<10} {sum(counts.values())}")
    typer.echo(f"Store: {store}")


@app.command()
def reindex():
    """Rebuild the search index from the items table."""
    with _repository() as repo, _errors_reported():
        count = repo.rebuild_index()
    typer.echo(f"Re-indexed {count} items")


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

@settings_app.command("get")
def settings_get(key: Annotated[str, typer.Argument(help="Setting name")]):
    """Print one setting."""
    with _settings() as settings:
        value = settings.get(key)
    if value is None:
        typer.echo(f"Error: no setting {key!r}", err=True)
        raise typer.Exit(1)
    typer.echo(value)


@settings_app.command("set")
def settings_set(
    key: Annotated[str, typer.Argument(help="Setting name")],
    value: Annotated[str, typer.Argument(help="New value")],
):
    """Store a setting (export_path, llm_provider, llm_model, api_key, ...)."""
    with _settings() as settings:
        settings.set(key, value)
    typer.echo(f"Set {key}")


@settings_app.command("list")
def settings_list():
    """Print all settings (API keys masked)."""
    with _settings() as settings:
        values = settings.all()
    for key, value in values.items():
        if "key" in key and value:
            value = value[:6] + "..." if len(value) > 6 else "***"
        typer.echo(f"{key} = {value}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="grimoire CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
