"""Error types raised by the closure engine and its loaders."""


class DissectorError(Exception):
    """Base class for all resolution errors."""


class NotFoundError(DissectorError):
    """A requested bundle, package, image or release is absent."""

    def __init__(self, name: str, kind: str = "bundle or package"):
        self.name = name
        self.kind = kind
        super().__init__(f"No {kind} named '{name}'")


class DataUnavailableError(DissectorError):
    """Backing data is missing, corrupt or unreadable."""


class ChecksumError(DataUnavailableError):
    """A downloaded file does not match its expected checksum."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}"
        )
