"""
Configuration module for GuildREL
Loads environment variables and provides default scoring settings
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Any, List, Mapping, Optional, Tuple
from dotenv import load_dotenv

from .exceptions import ConfigError

# Load environment variables from .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Default guild (CLI convenience only, every computation takes an explicit guild)
GUILD_ID = os.getenv("GUILD_ID", "")

# Storage
DB_PATH = os.getenv("GUILDREL_DB_PATH", str(PROJECT_ROOT / "guildrel.db"))

# ============================================================================
# Affinity Scoring
# ============================================================================

# Per-kind interaction weights
REACTION_WEIGHT = float(os.getenv("REACTION_WEIGHT", "1.0"))
MENTION_WEIGHT = float(os.getenv("MENTION_WEIGHT", "2.0"))
REPLY_WEIGHT = float(os.getenv("REPLY_WEIGHT", "3.0"))

# VC co-presence: points = vc_relative (%) * VC_WEIGHT / 100
VC_WEIGHT = float(os.getenv("VC_WEIGHT", "50.0"))
# Optional ceiling on VC points (empty = uncapped)
VC_CAP_POINTS = os.getenv("VC_CAP_POINTS", "")

# Time decay
DECAY_WINDOW_DAYS = float(os.getenv("DECAY_WINDOW_DAYS", "90"))
DECAY_TAU_DAYS = float(os.getenv("DECAY_TAU_DAYS", "30"))
DECAY_FLOOR = 0.1

# Fetch caps (bound worst-case overlap work)
INTERACTION_FETCH_LIMIT = int(os.getenv("INTERACTION_FETCH_LIMIT", "1000"))
SESSION_FETCH_LIMIT = int(os.getenv("SESSION_FETCH_LIMIT", "500"))
FETCH_CONCURRENCY = int(os.getenv("FETCH_CONCURRENCY", "4"))

# Ranking
RANK_WINDOW_DAYS = int(os.getenv("RANK_WINDOW_DAYS", "90"))
RANK_MODE = os.getenv("RANK_MODE", "counts")  # counts | composite
TOP_CANDIDATE_LIMIT = int(os.getenv("TOP_CANDIDATE_LIMIT", "50"))

# Overlap strategy
OVERLAP_STRATEGY = os.getenv("OVERLAP_STRATEGY", "pairwise")  # pairwise | sweep

# Relationship type thresholds (inclusive lower bounds on mutual score)
STRONG_THRESHOLD = float(os.getenv("STRONG_THRESHOLD", "15"))
MODERATE_THRESHOLD = float(os.getenv("MODERATE_THRESHOLD", "8"))
WEAK_THRESHOLD = float(os.getenv("WEAK_THRESHOLD", "3"))

VALID_RANK_MODES = ("counts", "composite")
VALID_OVERLAP_STRATEGIES = ("pairwise", "sweep")


def _optional_float(raw: str) -> Optional[float]:
    return float(raw) if raw.strip() else None


@dataclass(frozen=True)
class ScoringConfig:
    """
    Single object carrying every tunable of the scoring scheme.

    Passed explicitly to the calculator, ranker and classifier so a
    weighting scheme (e.g. absolute VC minutes vs relative VC share) can be
    swapped together with its threshold table without code changes.
    """

    kind_weights: Mapping[str, float] = field(default_factory=lambda: {
        "reaction": REACTION_WEIGHT,
        "mention": MENTION_WEIGHT,
        "reply": REPLY_WEIGHT,
    })
    vc_weight: float = VC_WEIGHT
    vc_cap_points: Optional[float] = _optional_float(VC_CAP_POINTS)
    decay_window_days: float = DECAY_WINDOW_DAYS
    decay_tau_days: float = DECAY_TAU_DAYS
    # Ordered high -> low, each (label, inclusive lower bound)
    classifier_thresholds: Tuple[Tuple[str, float], ...] = (
        ("strong", STRONG_THRESHOLD),
        ("moderate", MODERATE_THRESHOLD),
        ("weak", WEAK_THRESHOLD),
    )
    interaction_limit: int = INTERACTION_FETCH_LIMIT
    session_limit: int = SESSION_FETCH_LIMIT
    rank_window_days: int = RANK_WINDOW_DAYS
    rank_mode: str = RANK_MODE
    overlap_strategy: str = OVERLAP_STRATEGY
    top_candidate_limit: int = TOP_CANDIDATE_LIMIT

    def __post_init__(self):
        # Read-only copies of the weights and thresholds
        object.__setattr__(self, "kind_weights", MappingProxyType(dict(self.kind_weights)))
        object.__setattr__(
            self, "classifier_thresholds", tuple(tuple(t) for t in self.classifier_thresholds)
        )
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))

    def __hash__(self):
        values = tuple(getattr(self, f.name) for f in fields(self) if f.name != "kind_weights")
        return hash((tuple(sorted(self.kind_weights.items())),) + values)

    def validate(self) -> List[str]:
        """Return a list of problems (empty when the config is usable)."""
        errors = []

        for kind, weight in self.kind_weights.items():
            if weight < 0:
                errors.append(f"Weight for '{kind}' must be non-negative, got {weight}")
        if self.vc_weight < 0:
            errors.append(f"vc_weight must be non-negative, got {self.vc_weight}")
        if self.vc_cap_points is not None and self.vc_cap_points < 0:
            errors.append(f"vc_cap_points must be non-negative, got {self.vc_cap_points}")
        if self.decay_window_days < 0:
            errors.append("decay_window_days must be non-negative")
        if self.decay_tau_days <= 0:
            errors.append("decay_tau_days must be positive")
        if self.interaction_limit <= 0 or self.session_limit <= 0:
            errors.append("Fetch limits must be positive")
        if self.rank_mode not in VALID_RANK_MODES:
            errors.append(f"rank_mode must be one of {VALID_RANK_MODES}, got '{self.rank_mode}'")
        if self.overlap_strategy not in VALID_OVERLAP_STRATEGIES:
            errors.append(
                f"overlap_strategy must be one of {VALID_OVERLAP_STRATEGIES}, got '{self.overlap_strategy}'"
            )

        bounds = [bound for _, bound in self.classifier_thresholds]
        if not bounds:
            errors.append("classifier_thresholds must not be empty")
        elif any(b <= a for a, b in zip(bounds[1:], bounds)):
            errors.append(f"classifier_thresholds must be strictly decreasing, got {bounds}")
        elif bounds[-1] < 0:
            errors.append("classifier_thresholds must be non-negative")

        return errors

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        """Build from the module-level settings (environment / .env)."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind_weights": dict(self.kind_weights),
            "vc_weight": self.vc_weight,
            "vc_cap_points": self.vc_cap_points,
            "decay_window_days": self.decay_window_days,
            "decay_tau_days": self.decay_tau_days,
            "classifier_thresholds": [list(t) for t in self.classifier_thresholds],
            "interaction_limit": self.interaction_limit,
            "session_limit": self.session_limit,
            "rank_window_days": self.rank_window_days,
            "rank_mode": self.rank_mode,
            "overlap_strategy": self.overlap_strategy,
            "top_candidate_limit": self.top_candidate_limit,
        }


def get_config_summary() -> Dict[str, Any]:
    """Return a summary of current configuration."""
    return {
        "storage": {
            "db_path": DB_PATH,
            "default_guild": GUILD_ID or None,
        },
        "weights": {
            "reaction": REACTION_WEIGHT,
            "mention": MENTION_WEIGHT,
            "reply": REPLY_WEIGHT,
            "vc": VC_WEIGHT,
            "vc_cap_points": _optional_float(VC_CAP_POINTS),
        },
        "decay": {
            "window_days": DECAY_WINDOW_DAYS,
            "tau_days": DECAY_TAU_DAYS,
            "floor": DECAY_FLOOR,
        },
        "fetch": {
            "interaction_limit": INTERACTION_FETCH_LIMIT,
            "session_limit": SESSION_FETCH_LIMIT,
            "concurrency": FETCH_CONCURRENCY,
        },
        "ranking": {
            "window_days": RANK_WINDOW_DAYS,
            "mode": RANK_MODE,
            "top_candidates": TOP_CANDIDATE_LIMIT,
        },
        "overlap_strategy": OVERLAP_STRATEGY,
        "thresholds": {
            "strong": STRONG_THRESHOLD,
            "moderate": MODERATE_THRESHOLD,
            "weak": WEAK_THRESHOLD,
        },
    }


def validate_config() -> tuple[bool, str]:
    """Validate configuration. Returns (is_valid, message)."""
    try:
        ScoringConfig.from_env()
    except (ConfigError, ValueError) as e:
        return False, f"Invalid scoring configuration: {e}"

    if FETCH_CONCURRENCY < 1:
        return False, f"FETCH_CONCURRENCY must be >= 1, got {FETCH_CONCURRENCY}"

    return True, "Configuration valid"


if __name__ == "__main__":
    # Print config summary for debugging
    import json
    print("GuildREL Configuration:")
    print(json.dumps(get_config_summary(), indent=2))
    print()
    valid, msg = validate_config()
    print(f"Validation: {msg}")
