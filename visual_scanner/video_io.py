"""Video input abstraction layer.

Concrete frame sources following the FrameSource protocol: a live webcam and
a video file replay. Both wrap OpenCV's VideoCapture.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np

from visual_scanner.exceptions import PermissionDenied
from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)


class WebcamSource:
    """Frame source reading from a webcam or USB camera.

    Attributes:
        camera_id: Camera device ID (0 for default camera)
        cap: OpenCV VideoCapture object

    Example:
        >>> source = WebcamSource(camera_id=0)
        >>> try:
        ...     success, frame = source.read()
        ... finally:
        ...     source.release()
    """

    def __init__(self, camera_id: int = 0, width: int = 1280, height: int = 720):
        """Open the webcam.

        Args:
            camera_id: Camera device index (default: 0 for first camera)
            width: Requested capture width (best effort)
            height: Requested capture height (best effort)

        Raises:
            PermissionDenied: If the camera cannot be opened. OpenCV reports
                a refused permission and a missing or busy device the same way.
        """
        self.camera_id = camera_id
        self.cap = cv2.VideoCapture(camera_id)

        if not self.cap.isOpened():
            self.cap.release()
            raise PermissionDenied(
                f"Camera {camera_id} could not be opened. Check camera permission "
                f"and that no other application is using it."
            )

        # Keep only the latest frame so each read shows what the camera sees now
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._fps = self.cap.get(cv2.CAP_PROP_FPS) or 30.0

        actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

        logger.info(
            f"Opened webcam {camera_id}: {actual_width}x{actual_height} @ {self._fps:.1f} FPS"
        )

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """Read the current frame.

        Returns:
            Tuple of (success, frame); frame is a BGR image [H, W, 3] on success.
        """
        if not self.cap.isOpened():
            return False, None

        success, frame = self.cap.read()

        if not success:
            logger.warning("Failed to read frame from webcam")
            return False, None

        return True, frame

    def release(self) -> None:
        """Release webcam resources."""
        if self.cap.isOpened():
            self.cap.release()
            logger.info(f"Released webcam {self.camera_id}")

    @property
    def is_opened(self) -> bool:
        return self.cap.isOpened()

    def __repr__(self) -> str:
        status = "opened" if self.is_opened else "closed"
        return f"WebcamSource(camera_id={self.camera_id}, status={status}, fps={self._fps:.1f})"

    def __enter__(self) -> WebcamSource:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class VideoFileSource:
    """Frame source replaying a video file.

    The source closes itself at the end of the file, which ends a scan
    session driven by it. Useful for evaluating a dataset offline.

    Example:
        >>> with VideoFileSource("recordings/gallery_walk.mp4") as source:
        ...     success, frame = source.read()
    """

    def __init__(self, video_path: str | Path):
        """Open a video file.

        Raises:
            FileNotFoundError: If the file does not exist.
            RuntimeError: If OpenCV cannot decode the file.
        """
        self.video_path = Path(video_path)

        if not self.video_path.exists():
            raise FileNotFoundError(f"Video file not found: {self.video_path}")

        self.cap = cv2.VideoCapture(str(self.video_path))

        if not self.cap.isOpened():
            raise RuntimeError(
                f"Failed to open video file: {self.video_path}. "
                f"File may be corrupted or codec not supported."
            )

        self._fps = self.cap.get(cv2.CAP_PROP_FPS)
        self._frame_count = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT))

        logger.info(
            f"Opened video file: {self.video_path.name} "
            f"({self._frame_count} frames, {self._fps:.1f} FPS)"
        )

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """Read the next frame; closes the source at the end of the file."""
        if not self.cap.isOpened():
            return False, None

        success, frame = self.cap.read()

        if success:
            return True, frame

        logger.info("Reached end of video file")
        self.release()
        return False, None

    def release(self) -> None:
        """Release video file resources."""
        if self.cap.isOpened():
            self.cap.release()
            logger.info(f"Released video file: {self.video_path.name}")

    @property
    def is_opened(self) -> bool:
        return self.cap.isOpened()

    def __repr__(self) -> str:
        status = "opened" if self.is_opened else "closed"
        return (
            f"VideoFileSource(path={self.video_path.name}, status={status}, "
            f"frames={self._frame_count}, fps={self._fps:.1f})"
        )

    def __enter__(self) -> VideoFileSource:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
