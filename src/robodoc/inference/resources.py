"""
Scoped ownership of per-request inference resources.

A ResourceScope collects the tensors and model handles a request creates and
releases each of them exactly once when the scope closes, whether the request
succeeded or not. A process-wide counter of live resources backs the
"nothing leaks" checks in the tests and the health endpoint.

Author: RoboDoc Team
License: MIT
"""

import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

_live_lock = threading.Lock()
_live_count = 0


def live_resources() -> int:
    """Number of resources acquired by any scope and not yet released."""
    with _live_lock:
        return _live_count


def _adjust_live(delta: int) -> None:
    global _live_count
    with _live_lock:
        _live_count += delta


class ResourceScope:
    """
    Owns resources for the duration of one pipeline invocation.

    Resources are released in reverse acquisition order. A release callback
    is optional: without one the scope simply drops its reference (numpy
    arrays are freed once unreferenced).

    Usage:
        with ResourceScope('eye') as scope:
            model = scope.acquire(loaded_model, loaded_model.close, kind='model')
            tensor = scope.acquire(preprocessed, kind='tensor')
    """

    def __init__(self, name: str = '') -> None:
        self.name = name
        self._resources: List[Tuple[str, Any, Optional[Callable[[], None]]]] = []
        self._closed = False
        self.released = 0

    def acquire(
        self,
        resource: Any,
        release: Optional[Callable[[], None]] = None,
        kind: str = 'resource'
    ) -> Any:
        """
        Register a resource with this scope.

        Args:
            resource: The object to own
            release: Callback that frees it (e.g. ``model.close``)
            kind: Label used in logs ("tensor", "output", "model")

        Returns:
            The resource, so acquisition can wrap the expression creating it
        """
        if self._closed:
            raise RuntimeError(f"Resource scope {self.name!r} is already closed")

        self._resources.append((kind, resource, release))
        _adjust_live(1)
        return resource

    @property
    def held(self) -> int:
        """Resources acquired and not yet released."""
        return len(self._resources)

    def release_all(self) -> None:
        """Release every held resource once. Safe to call repeatedly."""
        while self._resources:
            kind, resource, release = self._resources.pop()
            try:
                if release is not None:
                    release()
            except Exception as e:
                logger.error(f"Failed to release {kind} in scope {self.name!r}: {e}")
            finally:
                _adjust_live(-1)
                self.released += 1
            del resource

        if not self._closed:
            logger.debug(f"Scope {self.name!r} released {self.released} resources")
        self._closed = True

    def __enter__(self) -> 'ResourceScope':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()
