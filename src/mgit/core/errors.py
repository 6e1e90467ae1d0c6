"""Error types raised by mgit."""


class MGitError(Exception):
    """Base class for every error mgit raises on purpose."""


class NotFoundError(MGitError, LookupError):
    """An object, reference, mapping or source commit is absent."""


class AmbiguousHashError(MGitError, LookupError):
    """A hash prefix matches more than one stored object."""

    def __init__(self, prefix: str, matches):
        self.prefix = prefix
        self.matches = sorted(matches)
        super().__init__(
            f"ambiguous hash prefix {prefix} matches {len(self.matches)} objects"
        )


class IntegrityError(MGitError):
    """The overlay graph failed verification."""


class InvalidRecordError(MGitError, ValueError):
    """Malformed input to a write, or a stored record that cannot be decoded."""


class InvalidHashError(InvalidRecordError):
    """A hash or hash prefix is too short or is not hexadecimal."""


class IOFailureError(MGitError, OSError):
    """Filesystem or network fault."""
