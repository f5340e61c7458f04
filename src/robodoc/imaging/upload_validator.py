"""
Caller-side checks on uploaded images.

Runs before any pipeline step so a rejected upload never loads a model.

Author: RoboDoc Team
License: MIT
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import InferenceSettings
from ..errors import UploadRejected

logger = logging.getLogger(__name__)

UNSUPPORTED_FORMAT_MESSAGE = "Unsupported image format. Please use JPEG or PNG."
TOO_LARGE_MESSAGE = "Image too large. Please use an image smaller than 5MB."
NO_FILE_MESSAGE = "Please select an image to upload."


@dataclass(frozen=True)
class Upload:
    """An uploaded file as received from the client."""
    data: bytes
    mime_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


class UploadValidator:
    """Enforces the accepted MIME types and the upload size limit."""

    def __init__(self, settings: Optional[InferenceSettings] = None) -> None:
        settings = settings or InferenceSettings()
        self.allowed_mime_types = tuple(settings.allowed_mime_types)
        self.max_bytes = settings.max_upload_bytes

    def validate(self, upload: Optional[Upload]) -> Upload:
        """
        Check an upload before it reaches the pipeline.

        Args:
            upload: The uploaded file

        Returns:
            The same upload, when accepted

        Raises:
            UploadRejected: With the message to show the user
        """
        if upload is None or not upload.data:
            raise UploadRejected(NO_FILE_MESSAGE)

        mime_type = (upload.mime_type or '').split(';')[0].strip().lower()
        if mime_type not in self.allowed_mime_types:
            logger.info(f"Rejected upload {upload.filename!r}: type {mime_type or 'unknown'}")
            raise UploadRejected(UNSUPPORTED_FORMAT_MESSAGE)

        if upload.size > self.max_bytes:
            logger.info(f"Rejected upload {upload.filename!r}: {upload.size} bytes")
            raise UploadRejected(TOO_LARGE_MESSAGE)

        return upload
