# errors.py


class ArchiveError(Exception):
    """Base class for every failure the core reports to its callers."""


class NetworkError(ArchiveError):
    """Transport or decoding failure while talking to the archive."""


class NotFound(ArchiveError):
    """Asset resolution exhausted every fallback tier."""


class InvalidResponse(ArchiveError):
    """A search page that even the tolerant decoder cannot read."""


class PlaybackFailure(ArchiveError):
    """The audio engine could not start or stopped abnormally."""
