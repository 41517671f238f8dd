"""Persisted UI / driver preferences.

A tiny JSON-backed key-value store. Reading is best-effort: a missing or
corrupt file just means "no preferences yet".
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_PREFS: Dict[str, Any] = {
    "showHistory": False,
    "recentWindowMs": 1600,
    "focusCurrentPhase": True,
    "showLabels": False,
    "speed": 1,
    "autoAdvance": True,
    "phaseDelayMs": 2000,
    "manualMode": False,
    "jitter": 0,
    "view": 0,
    "leaderId": 0,
}


def default_prefs_path() -> str:
    return os.path.join(os.getcwd(), ".pbft_prefs.json")


class PreferenceStore:
    def __init__(self, path: Optional[str] = None):
        self.path = path or default_prefs_path()
        self._data: Dict[str, Any] = {}

    def load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                parsed = json.load(f)
        except FileNotFoundError:
            parsed = {}
        except (OSError, ValueError) as e:
            logger.warning("[PREFS] could not read %s: %s", self.path, e)
            parsed = {}
        self._data = dict(parsed) if isinstance(parsed, dict) else {}
        return dict(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def update(self, **values: Any) -> None:
        self._data.update(values)
        self.save()

    def save(self) -> bool:
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            return True
        except OSError as e:
            logger.warning("[PREFS] could not write %s: %s", self.path, e)
            return False

    def reset(self) -> Dict[str, Any]:
        self._data = dict(DEFAULT_PREFS)
        self.save()
        return dict(self._data)
