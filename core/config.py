from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from core.phases import F, NODES


class ConfigError(ValueError):
    pass


def validate_node_count(n: int) -> tuple[bool, int]:
    # PBFT classic requirement: n = 3f + 1
    if n <= 0:
        return False, 0
    f = (n - 1) // 3
    ok = (3 * f + 1) == n
    return ok, f


# preference key -> config attribute
PREF_KEYS = {
    "speed": "speed",
    "autoAdvance": "auto_advance",
    "phaseDelayMs": "phase_delay_ms",
    "manualMode": "manual_mode",
    "jitter": "jitter_ms",
}


@dataclass
class SimulationConfig:
    n: int = NODES
    f: int = F

    # Driver scheduling
    step_ms: int = 300
    speed: float = 0.5
    auto_advance: bool = True
    phase_delay_ms: int = 2000
    manual_mode: bool = False
    jitter_ms: int = 0
    seed: Optional[int] = None

    # Retention
    timeline_cap: int = 500
    timeline_max_age_ms: int = 30000
    log_cap: int = 1000
    log_max_age_ms: int = 30000

    def validate(self) -> "SimulationConfig":
        ok, f = validate_node_count(int(self.n))
        if not ok:
            raise ConfigError(
                f"Invalid PBFT node count n={self.n}. Must be n = 3f + 1 (e.g. 4, 7, 10)."
            )
        if int(self.f) != f:
            raise ConfigError(f"f={self.f} does not match n={self.n} (expected f={f}).")
        if self.phase_delay_ms < 0 or self.jitter_ms < 0:
            raise ConfigError("phase_delay_ms and jitter_ms must be non-negative.")
        if self.timeline_cap <= 0 or self.log_cap <= 0:
            raise ConfigError("retention caps must be positive.")
        return self

    @classmethod
    def for_nodes(cls, n: int, **overrides: Any) -> "SimulationConfig":
        ok, f = validate_node_count(int(n))
        if not ok:
            raise ConfigError(
                f"Invalid PBFT node count n={n}. Must be n = 3f + 1 (e.g. 4, 7, 10)."
            )
        return cls(n=int(n), f=f, **overrides)

    def apply_prefs(self, prefs: Mapping[str, Any]) -> "SimulationConfig":
        """Overlay persisted driver preferences.

        Unknown keys, mistyped values and out-of-range numbers (negative,
        infinite, NaN, or a non-positive speed) are ignored.
        """
        types = {fl.name: fl.type for fl in fields(self)}
        for key, attr in PREF_KEYS.items():
            if key not in prefs:
                continue
            raw = prefs[key]
            if types[attr] == "bool":
                if isinstance(raw, bool):
                    setattr(self, attr, raw)
                continue
            if not _usable_number(raw):
                continue
            if types[attr] == "float":
                if raw > 0:
                    setattr(self, attr, float(raw))
            else:
                setattr(self, attr, int(raw))
        return self


def _usable_number(raw: Any) -> bool:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return False
    if isinstance(raw, float) and not math.isfinite(raw):
        return False
    return raw >= 0
