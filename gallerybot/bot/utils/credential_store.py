"""Persistent store for linked-device credentials reported by the gateway."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


class CredentialStore:
    """Merge incremental ``creds.update`` payloads into a local state file."""

    def __init__(self, state_file: Path) -> None:
        self.state_file = state_file
        self._creds: Optional[Dict[str, Any]] = None

    @property
    def creds(self) -> Optional[Dict[str, Any]]:
        """Latest credentials held in memory."""
        return self._creds

    def load(self) -> Optional[Dict[str, Any]]:
        """Load persisted credentials from disk."""
        if not self.state_file.exists():
            return None

        payload = json.loads(self.state_file.read_text(encoding="utf-8"))
        creds = self._parse_creds(payload)
        self._creds = creds
        return creds

    def save(self, update: Mapping[str, Any]) -> None:
        """Merge a partial credential update and write it atomically."""
        merged = dict(self._creds or {})
        merged.update(update)
        self._creds = merged

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "creds": merged,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        tmp_file = self.state_file.with_suffix(f"{self.state_file.suffix}.tmp")
        tmp_file.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp_file.replace(self.state_file)

    def clear(self) -> None:
        """Forget credentials after a logout so the next link starts clean."""
        self._creds = None
        if self.state_file.exists():
            self.state_file.unlink()

    @staticmethod
    def _parse_creds(payload: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(payload, dict):
            return None
        creds = payload.get("creds")
        if not isinstance(creds, dict):
            return None
        return creds
