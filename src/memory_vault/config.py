"""
Runtime configuration for the CLI and MCP server.

Environment variables:
    MEMORY_VAULT_DB_PATH                  - ChromaDB store path (default: ~/.cache/memory-vault)
    MEMORY_VAULT_COLLECTION               - collection name (default: memories)
    MEMORY_VAULT_MODEL                    - sentence-transformers model (default: all-MiniLM-L6-v2)
    MEMORY_VAULT_RECALL_LIMIT             - default recall size (default: 5)
    MEMORY_VAULT_CAPTURE_MAX_CHARS        - longest text accepted for saving (default: 2000)
    MEMORY_VAULT_CONSOLIDATION            - "0"/"false" disables scheduled consolidation
    MEMORY_VAULT_CONSOLIDATION_INTERVAL   - minutes between runs (default: 360)
    MEMORY_VAULT_LOG_LEVEL                - logging level (default: WARNING)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from .embeddings import DEFAULT_MODEL

_DEFAULT_DB_PATH = str(Path.home() / ".cache" / "memory-vault")

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class VaultConfig:
    db_path: str = _DEFAULT_DB_PATH
    collection: str = "memories"
    embedding_model: str = DEFAULT_MODEL
    recall_limit: int = 5
    capture_max_chars: int = 2000
    consolidation_enabled: bool = True
    consolidation_interval_minutes: float = 360
    log_level: str = "WARNING"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "VaultConfig":
        """Overlay the known keys of *raw* on the defaults; unknown keys are ignored."""
        if not raw:
            return cls()
        known = {f.name for f in fields(cls)}
        return replace(cls(), **{k: v for k, v in raw.items() if k in known and v is not None})

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "VaultConfig":
        env = os.environ if environ is None else environ
        raw: dict[str, Any] = {
            "db_path": env.get("MEMORY_VAULT_DB_PATH"),
            "collection": env.get("MEMORY_VAULT_COLLECTION"),
            "embedding_model": env.get("MEMORY_VAULT_MODEL"),
            "log_level": env.get("MEMORY_VAULT_LOG_LEVEL"),
        }
        if "MEMORY_VAULT_RECALL_LIMIT" in env:
            raw["recall_limit"] = int(env["MEMORY_VAULT_RECALL_LIMIT"])
        if "MEMORY_VAULT_CAPTURE_MAX_CHARS" in env:
            raw["capture_max_chars"] = int(env["MEMORY_VAULT_CAPTURE_MAX_CHARS"])
        if "MEMORY_VAULT_CONSOLIDATION" in env:
            raw["consolidation_enabled"] = (
                env["MEMORY_VAULT_CONSOLIDATION"].strip().lower() not in _FALSE_VALUES
            )
        if "MEMORY_VAULT_CONSOLIDATION_INTERVAL" in env:
            raw["consolidation_interval_minutes"] = float(env["MEMORY_VAULT_CONSOLIDATION_INTERVAL"])
        return cls.from_mapping(raw)
