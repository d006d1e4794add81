"""
Error classes for the fingerprinting pipeline and its collaborators.

Input and decode errors abort only the file being processed; the ingestion
driver catches FingerprintError per file and keeps going.
"""

from typing import Any, Dict, Optional


class FingerprintError(Exception):
    """Base error for everything raised by find_prints."""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "data": self.data,
        }


class InvalidInputError(FingerprintError, ValueError):
    """Empty, too short, mis-sampled or otherwise unusable input to a stage."""
    pass


class AudioDecodeError(FingerprintError):
    """The audio source could not open or decode a file."""
    pass


class StorageError(FingerprintError):
    """The fingerprint store could not be opened or a song row not created."""
    pass
