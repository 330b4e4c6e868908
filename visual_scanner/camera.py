"""Camera resource manager.

Owns at most one frame source at a time and pairs every acquisition with a
release, including on abnormal exits.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional

from visual_scanner.exceptions import PermissionDenied
from visual_scanner.interfaces import FrameSource
from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)


class CameraState(str, Enum):
    RELEASED = "released"
    ACQUIRING = "acquiring"
    ACTIVE = "active"


class CameraManager:
    """Scoped acquisition and release of the camera stream.

    State machine: RELEASED -> ACQUIRING -> ACTIVE -> RELEASED.

    Attributes:
        source_factory: Callable opening a new FrameSource. Raises
            PermissionDenied when access is refused.

    Example:
        >>> camera = CameraManager(lambda: WebcamSource(camera_id=0))
        >>> with camera as source:
        ...     success, frame = source.read()
        >>> camera.state
        <CameraState.RELEASED: 'released'>
    """

    def __init__(self, source_factory: Callable[[], FrameSource]):
        self.source_factory = source_factory
        self._state = CameraState.RELEASED
        self._source: Optional[FrameSource] = None

    @property
    def state(self) -> CameraState:
        return self._state

    @property
    def source(self) -> Optional[FrameSource]:
        """The live source while ACTIVE, else None."""
        return self._source

    @property
    def is_active(self) -> bool:
        return self._state == CameraState.ACTIVE

    def start(self) -> FrameSource:
        """Acquire the camera.

        Idempotent: returns the live source when already ACTIVE.

        Returns:
            The live frame source.

        Raises:
            PermissionDenied: If access is refused or the device cannot be
                opened. The manager is back in RELEASED and holds no handle.
        """
        if self._state == CameraState.ACTIVE and self._source is not None:
            return self._source

        self._state = CameraState.ACQUIRING
        logger.debug("Acquiring camera...")

        try:
            source = self.source_factory()
        except PermissionDenied:
            self._state = CameraState.RELEASED
            logger.warning("Camera access denied")
            raise
        except Exception:
            self._state = CameraState.RELEASED
            raise

        if not source.is_opened:
            source.release()
            self._state = CameraState.RELEASED
            raise PermissionDenied("Camera source did not open")

        self._source = source
        self._state = CameraState.ACTIVE
        logger.info(f"Camera active: {source}")
        return source

    def stop(self) -> None:
        """Release the camera. Safe to call repeatedly and from frame callbacks."""
        source = self._source

        # Detach before releasing so a nested stop() sees nothing to release
        self._source = None
        self._state = CameraState.RELEASED

        if source is None:
            return

        try:
            source.release()
        finally:
            logger.info("Camera released")

    def __enter__(self) -> FrameSource:
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"CameraManager(state={self._state.value})"
