"""
Preview store for screened images.

Holds the uploaded image so the screen can display it next to the diagnosis.
A preview lives until the screen revokes it (new image selected, step
changed) or until it is the oldest entry when the store is full.

Author: RoboDoc Team
License: MIT
"""

import logging
import secrets
import threading
from collections import OrderedDict
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

PREVIEW_ROUTE = '/previews'


class PreviewStore:
    """
    Bounded, thread-safe store of image previews keyed by random tokens.

    Attributes:
        max_entries: Previews kept before the oldest is evicted
    """

    def __init__(self, max_entries: int = 32) -> None:
        self.max_entries = max_entries
        self._previews: 'OrderedDict[str, Tuple[bytes, str]]' = OrderedDict()
        self._lock = threading.Lock()

    def create(self, data: bytes, mime_type: str) -> str:
        """Store an image and return its token."""
        token = secrets.token_urlsafe(16)
        with self._lock:
            self._previews[token] = (data, mime_type)
            while len(self._previews) > self.max_entries:
                evicted, _ = self._previews.popitem(last=False)
                logger.debug(f"Evicted preview {evicted}")
        return token

    def get(self, token: str) -> Optional[Tuple[bytes, str]]:
        with self._lock:
            return self._previews.get(token)

    def revoke(self, token: Optional[str]) -> bool:
        """Drop a preview. Returns False if it was already gone."""
        if not token:
            return False
        with self._lock:
            return self._previews.pop(token, None) is not None

    @staticmethod
    def url_for(token: str) -> str:
        return f"{PREVIEW_ROUTE}/{token}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._previews)
