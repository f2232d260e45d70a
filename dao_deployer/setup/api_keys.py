"""
Saved API keys for RPC and explorer URL templates.

Stored in ``<data>/config.json`` as ``{"apiKeys": {...}, "updatedAt": ...}``,
written atomically with mode 0600. Saved values fill ``${VAR}`` placeholders
before the environment does (see ``resolve_network``).
"""
from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from dao_deployer.errors import CorruptRecordError, InvalidConfigError, StorageError

from .keystore import read_json, write_json_atomic

logger = logging.getLogger(__name__)

API_KEY_NAMES = (
    "ALCHEMY_API_KEY",
    "INFURA_API_KEY",
    "ETHERSCAN_API_KEY",
    "POLYGONSCAN_API_KEY",
    "ARBISCAN_API_KEY",
    "OPTIMISTIC_ETHERSCAN_API_KEY",
    "BASESCAN_API_KEY",
    "SNOWTRACE_API_KEY",
    "BSCSCAN_API_KEY",
)

_EXPLORER_KEY_RE = re.compile(r"^[A-Z0-9]{34}$")


def validate_api_key(name: str, value: str) -> Optional[str]:
    """Return a problem description, or None when the value looks usable."""
    if name not in API_KEY_NAMES:
        return f"Unknown API key name {name!r}"
    value = (value or "").strip()
    if not value:
        return "API key cannot be empty"
    if name == "ALCHEMY_API_KEY" and len(value) < 20:
        return "Alchemy API key should be at least 20 characters"
    if name == "INFURA_API_KEY" and len(value) != 32:
        return "Infura API key should be 32 characters"
    if name.endswith("SCAN_API_KEY") or name == "SNOWTRACE_API_KEY":
        if not _EXPLORER_KEY_RE.match(value):
            return "Explorer API key should be 34 uppercase alphanumeric characters"
    return None


class ApiKeyStore:
    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            raise CorruptRecordError(f"Config file {self.path} is unreadable: {e}", path=str(self.path)) from e
        if not isinstance(data, dict) or not isinstance(data.get("apiKeys", {}), dict):
            raise CorruptRecordError(f"Config file {self.path} has an unexpected shape", path=str(self.path))
        return data

    def _write(self, keys: Mapping[str, str]) -> None:
        data = self._read()
        data["apiKeys"] = {k: v for k, v in keys.items() if v and v.strip()}
        data["updatedAt"] = datetime.now(timezone.utc).isoformat()
        try:
            write_json_atomic(self.path, data)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}", path=str(self.path)) from e

    def load(self) -> dict[str, str]:
        return dict(self._read().get("apiKeys", {}))

    def set(self, name: str, value: str) -> None:
        problem = validate_api_key(name, value)
        if problem:
            raise InvalidConfigError(f"Invalid value for {name}", issues=[problem], key=name)
        keys = self.load()
        keys[name] = value.strip()
        self._write(keys)
        logger.info("Saved %s to %s", name, self.path)

    def remove(self, name: str) -> bool:
        keys = self.load()
        if name not in keys:
            return False
        del keys[name]
        self._write(keys)
        logger.info("Removed %s from %s", name, self.path)
        return True

    def import_from_env(self, environ: Mapping[str, str] | None = None) -> tuple[list[str], list[str]]:
        """Copy known keys from the environment. Returns (imported, skipped)."""
        environ = os.environ if environ is None else environ
        keys = self.load()
        imported, skipped = [], []
        for name in API_KEY_NAMES:
            value = (environ.get(name) or "").strip()
            if value:
                keys[name] = value
                imported.append(name)
            else:
                skipped.append(name)
        if imported:
            self._write(keys)
        return imported, skipped

    def status(self, environ: Mapping[str, str] | None = None) -> list[dict[str, Any]]:
        """Which keys are configured and where from. Values are never included."""
        environ = os.environ if environ is None else environ
        saved = self.load()
        rows = []
        for name in API_KEY_NAMES:
            source = "config" if saved.get(name) else ("env" if environ.get(name) else None)
            rows.append({"key": name, "configured": source is not None, "source": source})
        return rows
