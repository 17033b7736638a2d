"""
Export items as markdown files with YAML frontmatter.

Layout under the base directory (usually ``~/.claude``):
- agents/<name>.md
- commands/<name>.md
- skills/<name>/SKILL.md

Prompts have no file form; they are meant to be copied.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import UnsupportedExport
from .types import Agent, Category, Command, Item, Skill

logger = logging.getLogger(__name__)


def render_frontmatter(meta: dict[str, Any], body: str) -> str:
    """Markdown document with a frontmatter block (omitted when ``meta`` is empty)."""
    meta = {k: v for k, v in meta.items() if v is not None}
    if not meta:
        return body
    header = yaml.safe_dump(
        meta, sort_keys=False, allow_unicode=True, default_flow_style=False, width=1_000_000,
    )
    return f"---\n{header}---\n\n{body}"


class ClaudeExporter:
    """Writes agents, commands and skills in the .claude directory format."""

    def __init__(self, base_path: "str | Path"):
        self.base_path = Path(base_path).expanduser()

    def export(self, item: Item) -> Path:
        """
        Write ``item`` to its file, replacing any previous export.

        Returns:
            Path of the written file

        Raises:
            UnsupportedExport: For prompts
        """
        if not exportable(item.category):
            raise UnsupportedExport(item.category)
        if isinstance(item, Agent):
            path = self.base_path / "agents" / f"{item.name}.md"
            text = self.format_agent(item)
        elif isinstance(item, Command):
            path = self.base_path / "commands" / f"{item.name}.md"
            text = self.format_command(item)
        else:
            path = self.base_path / "skills" / item.name / "SKILL.md"
            text = self.format_skill(item)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info("export id=%s category=%s path=%s", item.id, item.category, path)
        return path

    @staticmethod
    def format_agent(item: Agent) -> str:
        return render_frontmatter({
            "name": item.name,
            "description": item.description,
            "tools": item.tool_list,
            "model": item.model,
            "permissionMode": item.permission_mode,
            "skills": item.skill_refs,
        }, item.content)

    @staticmethod
    def format_command(item: Command) -> str:
        return render_frontmatter({
            "description": item.description,
            "allowed-tools": item.allowed_tools,
            "argument-hint": item.argument_hint,
            "model": item.model,
        }, item.content)

    @staticmethod
    def format_skill(item: Skill) -> str:
        return render_frontmatter({
            "name": item.name,
            "description": item.description,
            "allowed-tools": item.allowed_tools,
        }, item.content)


def exportable(category: Category) -> bool:
    """Whether items of ``category`` have a file form."""
    return category is not Category.PROMPT
