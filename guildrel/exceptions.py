"""
Exception types for GuildREL.

Missing data (unknown users, no interactions, no sessions) is never an
exception: it yields zero-valued results. Exceptions are reserved for
"could not compute" conditions and per-record validation.
"""


class GuildRelError(Exception):
    """Base class for all GuildREL errors."""
    pass


class StorageUnavailableError(GuildRelError):
    """Raised when the interaction/session store cannot be reached or a query fails."""
    pass


class MalformedRecordError(GuildRelError, ValueError):
    """Raised for a single bad record (e.g. leftAt < joinedAt, negative age)."""
    pass


class DuplicateSessionError(GuildRelError):
    """Raised when opening a voice session for a user who already has one open."""
    pass


class ConfigError(GuildRelError, ValueError):
    """Raised for an unusable scoring configuration."""
    pass
