"""Exceptions raised by the visual scanner."""


class ScannerError(Exception):
    """Base exception for the visual scanner."""


class ModelLoadError(ScannerError):
    """Raised when the embedding model cannot be loaded. Fatal for the session."""


class ModelNotReady(ScannerError):
    """Raised when an embedding is requested before the model finished loading."""


class DimensionMismatch(ScannerError, ValueError):
    """Raised when an embedding does not have the dataset's dimension."""


class CorruptionError(ScannerError):
    """Raised when a serialized dataset cannot be parsed."""


class PermissionDenied(ScannerError):
    """Raised when camera access is refused or the device cannot be opened.

    Recoverable: the caller may ask the user again and retry.
    """


class NotReady(ScannerError):
    """Raised when a scanning operation is requested before the engine is ready."""


class DatasetLocked(ScannerError):
    """Raised when the reference dataset is mutated while loading or scanning."""
