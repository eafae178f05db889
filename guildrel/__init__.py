"""
GuildREL - Discord Guild Relationship Analyzer

Derives directional affinity between guild members from reactions, mentions,
replies and voice-channel co-presence, then ranks, classifies and explains
those relationships.
"""

__version__ = "1.0.0"
__author__ = "GuildREL Team"

from . import config
from . import decay
from . import overlap
from . import store
from . import ranking
from . import classifier
from . import insight_engine
from . import affinity

from .affinity import AffinityService
from .config import ScoringConfig
from .exceptions import (
    GuildRelError,
    StorageUnavailableError,
    MalformedRecordError,
    DuplicateSessionError,
    ConfigError,
)

__all__ = [
    "config",
    "decay",
    "overlap",
    "store",
    "ranking",
    "classifier",
    "insight_engine",
    "affinity",
    "AffinityService",
    "ScoringConfig",
    "GuildRelError",
    "StorageUnavailableError",
    "MalformedRecordError",
    "DuplicateSessionError",
    "ConfigError",
]
