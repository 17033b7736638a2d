"""
Configuration management for grimoire.

The configuration is stored as a TOML file in the grimoire home directory.
It says where the database lives, where exports go by default, which
provider generates AI suggestions, and whether to verify the search index
when a database is opened.
"""

import os
import platform
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "grimoire.toml"
DATABASE_FILENAME = "grimoire.db"
CONFIG_VERSION = 1

DEFAULT_EXPORT_PATH = "~/.claude"
DEFAULT_SUGGESTION_PROVIDER = "anthropic"
SUGGESTION_PROVIDERS = ("anthropic", "openai")


def get_data_dir() -> Path:
    """
    Per-platform directory holding the config file and the database.

    GRIMOIRE_HOME overrides the platform default:
    - macOS: ~/Library/Application Support/grimoire
    - Windows: %APPDATA%\\grimoire
    - otherwise: $XDG_DATA_HOME/grimoire (default ~/.local/share/grimoire)
    """
    override = os.environ.get("GRIMOIRE_HOME")
    if override:
        return Path(override).expanduser()

    system = platform.system()
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "grimoire"
    if system == "Windows":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        return base / "grimoire"
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return base / "grimoire"


@dataclass
class SuggestionConfig:
    """Which LLM produces suggested content."""
    provider: str = DEFAULT_SUGGESTION_PROVIDER
    model: Optional[str] = None
    max_tokens: int = 4096


@dataclass
class GrimoireConfig:
    """Complete configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    store_path: Optional[Path] = None
    export_path: str = DEFAULT_EXPORT_PATH
    suggestion: SuggestionConfig = field(default_factory=SuggestionConfig)
    verify_index_on_open: bool = True

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Database file: [store] path if set, else next to the config."""
        if self.store_path is not None:
            return self.store_path
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def load_config(config_dir: Path) -> GrimoireConfig:
    """
    Load configuration from a directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    suggestion = data.get("suggestion", {})
    provider = suggestion.get("provider", DEFAULT_SUGGESTION_PROVIDER)
    if provider not in SUGGESTION_PROVIDERS:
        raise ValueError(
            f"Unknown suggestion provider {provider!r} "
            f"(expected one of: {', '.join(SUGGESTION_PROVIDERS)})"
        )

    store_path = store.get("path")
    return GrimoireConfig(
        path=config_dir,
        version=version,
        created=store.get("created", ""),
        store_path=Path(store_path).expanduser() if store_path else None,
        export_path=data.get("export", {}).get("path", DEFAULT_EXPORT_PATH),
        suggestion=SuggestionConfig(
            provider=provider,
            model=suggestion.get("model") or None,
            max_tokens=int(suggestion.get("max_tokens", 4096)),
        ),
        verify_index_on_open=bool(data.get("search", {}).get("verify_on_open", True)),
    )


def save_config(config: GrimoireConfig) -> None:
    """
    Save configuration to its directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    store: dict[str, Any] = {
        "version": config.version,
        "created": config.created,
    }
    if config.store_path is not None:
        store["path"] = str(config.store_path)

    suggestion: dict[str, Any] = {
        "provider": config.suggestion.provider,
        "max_tokens": config.suggestion.max_tokens,
    }
    # TOML has no null
    if config.suggestion.model:
        suggestion["model"] = config.suggestion.model

    data = {
        "store": store,
        "export": {"path": config.export_path},
        "suggestion": suggestion,
        "search": {"verify_on_open": config.verify_index_on_open},
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(config_dir: Optional[Path] = None) -> GrimoireConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_dir = config_dir if config_dir is not None else get_data_dir()
    if (config_dir / CONFIG_FILENAME).exists():
        return load_config(config_dir)
    config = GrimoireConfig(path=config_dir)
    save_config(config)
    return config
