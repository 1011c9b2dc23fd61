"""
config.py — Engine Configuration
================================

Weights, thresholds and tunables shared by every scoring component.

Defaults can be overridden through the environment (a local ``.env`` file is
loaded with python-dotenv):
    - SCAMSCOPE_RISK_MEDIUM / SCAMSCOPE_RISK_HIGH     : risk thresholds
    - SCAMSCOPE_PREFILTER_SOFT / SCAMSCOPE_PREFILTER_AUTO : prefilter actions
    - SCAMSCOPE_PREFILTER_RECENT_LINES                : prefilter window
    - SCAMSCOPE_REDIRECT_MAX_HOPS / SCAMSCOPE_REDIRECT_TIMEOUT_MS
    - SCAMSCOPE_SIM_GATE                              : similarity boost gate
    - SCAMSCOPE_SIM_INDEX_PATH                        : similarity index JSON

An ``EngineConfig`` is immutable once built and is passed explicitly into the
scorer, stage classifier, escalation engine and prefilter.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from scamscope.lexicon import RuleCatalog, build_catalog

load_dotenv()


class ConfigError(ValueError):
    """Raised for unknown weight keys or non-numeric overrides."""


RISK_MEDIUM: float = float(os.getenv("SCAMSCOPE_RISK_MEDIUM", "35"))
RISK_HIGH: float = float(os.getenv("SCAMSCOPE_RISK_HIGH", "65"))

PREFILTER_SOFT: int = int(os.getenv("SCAMSCOPE_PREFILTER_SOFT", "28"))
PREFILTER_AUTO: int = int(os.getenv("SCAMSCOPE_PREFILTER_AUTO", "52"))
PREFILTER_RECENT_LINES: int = int(os.getenv("SCAMSCOPE_PREFILTER_RECENT_LINES", "16"))

REDIRECT_MAX_HOPS: int = int(os.getenv("SCAMSCOPE_REDIRECT_MAX_HOPS", "5"))
REDIRECT_TIMEOUT_MS: int = int(os.getenv("SCAMSCOPE_REDIRECT_TIMEOUT_MS", "2500"))

SIM_GATE: float = float(os.getenv("SCAMSCOPE_SIM_GATE", "0.9"))
SIM_INDEX_PATH: Optional[str] = os.getenv("SCAMSCOPE_SIM_INDEX_PATH") or None


# Base weight per rule family. Keyword/pattern hits multiply these by
# min(3, distinct matches); URL heuristics by min(2, distinct matches).
DEFAULT_WEIGHTS: Dict[str, float] = {
    "link":              25,
    "shortener":         30,

    "urlHttp":            8,
    "urlIpHost":         18,
    "urlPunycode":       20,
    "urlAtSign":         16,
    "urlSuspiciousTld":  12,
    "urlDeepSubdomain":  10,
    "urlDownloadExt":    22,
    "urlBrandMismatch":  26,

    "otp":               22,
    "personalInfo":      20,
    "money":             18,
    "urgency":           10,
    "authority":         10,
    "threat":            14,
    "installRemote":     28,
    "safeAccount":       22,

    "investLure":        10,
    "jobLure":           20,

    "callOtp":           30,
    "callRemote":        35,
    "callUrgent":        15,

    # Keyword families with no weight of their own above
    "installApp":        18,
    "accountVerify":     16,
    "goBankAtm":         20,
    "txnAlert":           8,
    "social":             6,
    "messengerPhishing": 16,
    "governmentBenefit": 12,
    "secrecy":           12,
    "giftcard":          24,
    "linkMention":       10,
}


@dataclass(frozen=True)
class Thresholds:
    """Score cut-offs for the medium and high risk bands."""
    medium: float = 35.0
    high: float = 65.0


@dataclass(frozen=True)
class PrefilterSettings:
    soft: int = 28                 # action "soft" at or above
    auto: int = 52                 # action "auto" at or above
    recent_lines: int = 16         # non-empty tail lines examined
    max_redirect_hops: int = 5     # query-parameter chase cap
    resolve_timeout_ms: int = 2500


@dataclass(frozen=True)
class EngineConfig:
    """Immutable bundle handed to every analysis component."""
    weights: Mapping[str, float]
    thresholds: Thresholds
    prefilter: PrefilterSettings
    catalog: RuleCatalog
    sim_gate: float = 0.9


def _clamp(n: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, n))


def normalize_weights(overrides: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
    """Merge overrides onto the default weight table.

    Raises:
        ConfigError: If a key is unknown or a value is not a finite number.
    """
    merged = dict(DEFAULT_WEIGHTS)
    for key, value in (overrides or {}).items():
        if key not in merged:
            raise ConfigError(f"Unknown weight key: {key!r}")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"Weight {key!r} must be a number, got {value!r}")
        if value != value or value in (float("inf"), float("-inf")) or value < 0:
            raise ConfigError(f"Weight {key!r} must be finite and non-negative")
        merged[key] = float(value)
    return merged


def normalize_thresholds(medium: Optional[float] = None, high: Optional[float] = None) -> Thresholds:
    """Clamp thresholds so that 0 <= medium <= 99 and medium < high <= 200."""
    m = RISK_MEDIUM if medium is None else float(medium)
    h = RISK_HIGH if high is None else float(high)
    m = _clamp(m, 0, 99)
    h = _clamp(h, m + 1, 200)
    return Thresholds(medium=m, high=h)


def build_config(
    weight_overrides: Optional[Mapping[str, float]] = None,
    medium: Optional[float] = None,
    high: Optional[float] = None,
    prefilter: Optional[PrefilterSettings] = None,
    sim_gate: Optional[float] = None,
) -> EngineConfig:
    """Build an ``EngineConfig`` with the rule catalog compiled against the
    resolved weights."""
    weights = normalize_weights(weight_overrides)
    return EngineConfig(
        weights=MappingProxyType(weights),
        thresholds=normalize_thresholds(medium, high),
        prefilter=prefilter or PrefilterSettings(
            soft=PREFILTER_SOFT,
            auto=PREFILTER_AUTO,
            recent_lines=PREFILTER_RECENT_LINES,
            max_redirect_hops=REDIRECT_MAX_HOPS,
            resolve_timeout_ms=REDIRECT_TIMEOUT_MS,
        ),
        catalog=build_catalog(weights),
        sim_gate=SIM_GATE if sim_gate is None else float(sim_gate),
    )


@lru_cache(maxsize=1)
def default_config() -> EngineConfig:
    """Process-wide default configuration, built once."""
    return build_config()
