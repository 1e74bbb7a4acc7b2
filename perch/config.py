"""
Store settings for perch, kept in ``perch.toml`` inside the store directory.

The file names the embedding and content providers, the bookmark file being
organized, and the sync engine's tuning knobs. Missing sections fall back to
defaults, so a hand-written file only needs the keys it changes.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "perch.toml"
CONFIG_VERSION = 1

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_CONCURRENCY = 3
DEFAULT_LOAD_TIMEOUT = 5.0
DEFAULT_MIN_CONTENT_CHARS = 3

# Firefox root folders; never part of a folder path
DEFAULT_EXCLUDED_ROOTS = (
    "unfiled_____",
    "mobile______",
    "menu________",
    "toolbar_____",
    "tags________",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProviderConfig:
    """A provider name plus whatever keyword arguments its factory takes."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_section(cls, section: dict, fallback: str) -> "ProviderConfig":
        params = dict(section)
        return cls(params.pop("name", fallback), params)

    def to_section(self) -> dict:
        return {"name": self.name, **self.params}


@dataclass
class StoreConfig:
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=_now)

    embedding: ProviderConfig = field(
        default_factory=lambda: ProviderConfig("sentence-transformers", {"model": DEFAULT_EMBEDDING_MODEL})
    )
    content: ProviderConfig = field(
        default_factory=lambda: ProviderConfig("http", {"timeout": DEFAULT_LOAD_TIMEOUT})
    )

    concurrency: int = DEFAULT_CONCURRENCY
    min_content_chars: int = DEFAULT_MIN_CONTENT_CHARS

    tree_path: Optional[Path] = None
    excluded_roots: tuple[str, ...] = DEFAULT_EXCLUDED_ROOTS

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """SQLite file holding the embedding records."""
        return self.path / "embeddings.db"

    def exists(self) -> bool:
        return self.config_path.is_file()

    def to_toml(self) -> dict:
        tree: dict[str, Any] = {"excluded_roots": list(self.excluded_roots)}
        if self.tree_path is not None:
            tree["path"] = str(self.tree_path)
        return {
            "store": {"version": self.version, "created": self.created},
            "embedding": self.embedding.to_section(),
            "content": self.content.to_section(),
            "sync": {
                "concurrency": self.concurrency,
                "min_content_chars": self.min_content_chars,
            },
            "tree": tree,
        }


def get_default_store_path() -> Path:
    """
    Resolve the store directory.

    PERCH_STORE_PATH wins over the default ~/.perch.
    """
    env_path = os.environ.get("PERCH_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".perch"


def load_config(store_path: Path) -> StoreConfig:
    """
    Read ``perch.toml`` from *store_path*.

    Raises:
        FileNotFoundError: The store has no config file yet.
        ValueError: The file was written by a newer perch, or holds
            a value the sync engine cannot run with.
    """
    toml_file = Path(store_path) / CONFIG_FILENAME
    if not toml_file.is_file():
        raise FileNotFoundError(f"No {CONFIG_FILENAME} in {store_path}")

    raw = tomllib.loads(toml_file.read_text(encoding="utf-8"))
    header = raw.get("store", {})
    sync = raw.get("sync", {})
    tree = raw.get("tree", {})

    version = int(header.get("version", CONFIG_VERSION))
    if version > CONFIG_VERSION:
        raise ValueError(
            f"{toml_file} has version {version}, newer than this perch understands ({CONFIG_VERSION})"
        )

    concurrency = int(sync.get("concurrency", DEFAULT_CONCURRENCY))
    if concurrency < 1:
        raise ValueError(f"sync.concurrency must be at least 1, got {concurrency}")

    tree_path = tree.get("path")
    return StoreConfig(
        path=Path(store_path),
        version=version,
        created=header.get("created", ""),
        embedding=ProviderConfig.from_section(raw.get("embedding", {}), "sentence-transformers"),
        content=ProviderConfig.from_section(raw.get("content", {}), "http"),
        concurrency=concurrency,
        min_content_chars=int(sync.get("min_content_chars", DEFAULT_MIN_CONTENT_CHARS)),
        tree_path=Path(tree_path).expanduser() if tree_path else None,
        excluded_roots=tuple(tree.get("excluded_roots", DEFAULT_EXCLUDED_ROOTS)),
    )


def save_config(config: StoreConfig) -> None:
    """Write *config* to its store directory, creating the directory as needed."""
    config.path.mkdir(parents=True, exist_ok=True)
    config.config_path.write_text(tomli_w.dumps(config.to_toml()), encoding="utf-8")


def load_or_create_config(store_path: Path) -> StoreConfig:
    """Open the store's config, writing a default one on first use."""
    config = StoreConfig(path=Path(store_path))
    if config.exists():
        return load_config(store_path)
    save_config(config)
    return config
