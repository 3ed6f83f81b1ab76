"""Bridge exception hierarchy.

Only startup problems are raised as exceptions. Malformed log lines, bad
matchers and failing hook commands are handled where they occur.
"""


class BridgeError(Exception):
    """Base class for fatal bridge errors."""


class ManifestError(BridgeError):
    """The manifest exists but could not be read from disk."""


class WatchLockError(BridgeError):
    """Unexpected OS failure while creating the watch lock."""
