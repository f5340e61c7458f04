"""
Error types for the RoboDoc screening pipeline.

Every failure raised inside the pipeline derives from ScreeningError so the
pipeline boundary can turn it into a single display string.

Author: RoboDoc Team
License: MIT
"""


class ScreeningError(Exception):
    """Base class for all screening failures."""

    def display_message(self) -> str:
        """Message shown to the user."""
        return f"Error: {self}"


class InvalidSegment(ScreeningError):
    """Segment identifier is not one of the configured segments."""

    def __init__(self, segment: str) -> None:
        super().__init__(f"Invalid segment: {segment}")
        self.segment = segment


class ModelLoadError(ScreeningError):
    """Model file missing, unreadable, or incompatible with its segment."""


class LabelLoadError(ScreeningError):
    """Label file missing, malformed, or inconsistent with the model."""


class ImageDecodeError(ScreeningError):
    """Uploaded bytes could not be decoded as an image."""


class InferenceError(ScreeningError):
    """Forward pass failed (shape mismatch, runtime error)."""


class NetworkError(ScreeningError):
    """Chat completion request failed."""


class UploadRejected(ScreeningError):
    """Upload refused before the pipeline runs (format or size)."""

    def display_message(self) -> str:
        # Upload checks already produce user-facing sentences
        return str(self)
