"""JSON file storage for the few things that outlive a session.

Sessions themselves are never persisted; a reload starts over. Only player
preferences are kept, in one flat JSON file under a configurable base
directory:

    {base}/
      preferences.json      ← {"language": "..."}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from aleph_engine.story import DEFAULT_LANGUAGE

_PREFERENCE_DEFAULTS: dict[str, Any] = {
    "language": DEFAULT_LANGUAGE,
}


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _prefs_file(self) -> Path:
        return self._base / "preferences.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preferences(self) -> dict[str, Any]:
        """Read preferences, returning defaults merged with stored values."""
        prefs = dict(_PREFERENCE_DEFAULTS)
        path = self._prefs_file()
        if path.is_file():
            stored = self._read_json(path)
            if isinstance(stored.get("language"), str) and stored["language"].strip():
                prefs["language"] = stored["language"]
        return prefs

    def get_language(self) -> str:
        return self.get_preferences()["language"]

    def set_language(self, language: str) -> str:
        """Persist the language preference. Returns the stored value."""
        language = language.strip()
        if not language:
            raise ValueError("Language must not be empty")
        prefs = self.get_preferences()
        prefs["language"] = language
        self._write_json(self._prefs_file(), prefs)
        return language
