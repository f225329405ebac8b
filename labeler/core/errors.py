"""
Error taxonomy for the labeling engine

Every error raised by the engine derives from LabelerError so the console
loop can report it and keep going. None of them is fatal to the process.
"""
from typing import Iterable, Optional


class LabelerError(Exception):
    """Base class for recoverable labeling errors."""
    pass


class DuplicateNameError(LabelerError):
    """Label name collision while loading threat descriptions."""

    def __init__(self, names: Iterable[str]):
        self.names = sorted(set(names))
        super().__init__(f"duplicate label name(s): {', '.join(self.names)}")


class InvalidRegex(LabelerError):
    """Signature pattern rejected at add time."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"invalid signature {pattern!r}: {reason}")


class IndexOutOfRange(LabelerError):
    """Display index does not point at an existing keyword or signature."""

    def __init__(self, kind: str, index: int, size: int):
        self.kind = kind
        self.index = index
        self.size = size
        if size:
            valid = f"1..{size}"
        else:
            valid = "none"
        super().__init__(f"{kind} #{index} not found (valid: {valid})")


class UnknownToken(LabelerError):
    """Token text was never seen by the dictionary."""

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"unknown token: {token!r}")


class UnknownLabel(LabelerError):
    """Label id (or name) does not exist."""

    def __init__(self, label: object):
        self.label = label
        super().__init__(f"label {label} not found")


class StorageError(LabelerError):
    """Commit failed; nothing was persisted."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class InvalidKeyword(LabelerError):
    """Keyword phrase rejected at add time."""
    pass


class ScopeError(LabelerError):
    """Staging command issued outside the scope that permits it."""
    pass


class DocumentError(LabelerError):
    """Threat description document could not be read or validated."""
    pass


class ConfigError(LabelerError):
    """Invalid configuration file or value."""
    pass
