from typing import Optional


class SnapshotError(Exception):
    """Base class for everything that can go wrong while loading a snapshot."""


class FetchError(SnapshotError):
    def __init__(self, status: int, reason: Optional[str] = None):
        self.status = status
        self.reason = reason or ""
        super().__init__(f"API Error: {status} {self.reason}".rstrip())


class SchemaError(SnapshotError):
    def __init__(self, message: str = "Invalid API response structure."):
        super().__init__(message)


class ParseError(SnapshotError):
    pass


class UnknownError(SnapshotError):
    pass
