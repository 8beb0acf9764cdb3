"""Runtime settings, read from environment variables (and ``.env`` via the CLI)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "claude-sonnet-4-6"


@dataclass
class Settings:
    """Storage locations, model choice, and retrieval bounds."""

    db_path: Path = field(default_factory=lambda: Path("data/mailsage.db"))
    chroma_dir: Path = field(default_factory=lambda: Path("data/chroma"))
    model: str = _DEFAULT_MODEL
    max_tokens: int = 1024
    top_k: int = 10
    min_similarity: float = 0.3
    api_key: str = ""

    @classmethod
    def from_env(cls) -> Settings:
        """Build Settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            db_path=Path(os.environ.get("MAILSAGE_DB_PATH", str(defaults.db_path))),
            chroma_dir=Path(os.environ.get("MAILSAGE_CHROMA_DIR", str(defaults.chroma_dir))),
            model=os.environ.get("MAILSAGE_MODEL", defaults.model),
            max_tokens=_env_int("MAILSAGE_MAX_TOKENS", defaults.max_tokens),
            top_k=_env_int("MAILSAGE_TOP_K", defaults.top_k),
            min_similarity=_env_float("MAILSAGE_MIN_SIMILARITY", defaults.min_similarity),
            api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
        return default
