"""Exception hierarchy shared by every layer."""


class KiokuError(Exception):
    """Base class for all Kioku errors."""


class CollaboratorError(KiokuError):
    """An external collaborator (card store, catalog, progress tracker) failed."""


class SessionLoadError(KiokuError):
    """The review session could not fetch its cards or catalog data."""


class SessionStateError(KiokuError):
    """A session operation was called in a state that does not allow it."""


class ConfigError(KiokuError):
    """The resolved configuration is inconsistent."""
