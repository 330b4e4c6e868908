"""Teach flow for adding reference examples.

An administrator points the camera at a work and the service captures
examples for its label, skipping blurry frames, until the target count is
reached. Examples go through the engine so the dataset lock is respected.
"""

from __future__ import annotations

from typing import Optional, Protocol

import cv2
import numpy as np

from visual_scanner.interfaces import FrameSource
from visual_scanner.logging_config import get_logger
from visual_scanner.utils import compute_sharpness

logger = get_logger(__name__)

RECOMMENDED_EXAMPLES = 10


class ExampleSink(Protocol):
    """Anything that turns a frame into a stored example (ScannerEngine)."""

    def capture_example(self, label: str, frame: np.ndarray) -> np.ndarray:
        ...


class TrainingService:
    """Capture reference examples for a label from a frame source.

    Workflow:
    1. Read frames from the source
    2. Reject blurry frames (Laplacian variance below min_sharpness)
    3. Extract the embedding and store it under the label

    Attributes:
        sink: Engine receiving the examples
        min_sharpness: Minimum Laplacian variance for a usable frame

    Example:
        >>> service = TrainingService(engine, min_sharpness=100.0)
        >>> with WebcamSource(0) as source:
        ...     service.enroll_from_source(source, "art-12", num_examples=15)
        >>> engine.save()
    """

    def __init__(self, sink: ExampleSink, min_sharpness: float = 100.0):
        self.sink = sink
        self.min_sharpness = min_sharpness

        logger.info(f"Initialized TrainingService: min_sharpness={min_sharpness}")

    def process_frame(
        self,
        frame: np.ndarray,
        label: str,
    ) -> tuple[bool, Optional[np.ndarray], str]:
        """Try to turn one frame into an example.

        Args:
            frame: Input frame in BGR format [H, W, 3]
            label: Label the example is taught for

        Returns:
            Tuple of (success, embedding, message):
                - success: True if the example was stored
                - embedding: Stored embedding if success, None otherwise
                - message: Status message explaining the result
        """
        if frame is None or frame.size == 0:
            return False, None, "Empty frame"

        sharpness = compute_sharpness(frame)
        if sharpness < self.min_sharpness:
            return False, None, f"Low sharpness ({sharpness:.1f} < {self.min_sharpness})"

        embedding = self.sink.capture_example(label, frame)

        logger.debug(f"Captured example for '{label}': sharpness={sharpness:.1f}")
        return True, embedding, f"Captured (sharpness={sharpness:.1f})"

    def enroll_from_source(
        self,
        source: FrameSource,
        label: str,
        num_examples: int = 15,
        display: bool = False,
        display_window: str = "Teach",
    ) -> int:
        """Capture examples for a label until the target count is reached.

        Stops early when the source runs out of frames or ESC is pressed in
        the preview window.

        Args:
            source: Frame source (webcam or video file)
            label: Label to teach
            num_examples: Target number of examples
            display: Whether to show a preview window
            display_window: Window name for display

        Returns:
            Number of examples captured.
        """
        logger.info(f"Starting teach flow for '{label}' (target: {num_examples} examples)")

        if num_examples < RECOMMENDED_EXAMPLES:
            logger.warning(
                f"{num_examples} examples requested; at least {RECOMMENDED_EXAMPLES} "
                f"per label are recommended for reliable matches"
            )

        captured = 0
        frames_read = 0

        try:
            while captured < num_examples:
                ok, frame = source.read()
                if not ok:
                    logger.warning("Frame source exhausted")
                    break

                frames_read += 1
                success, _, message = self.process_frame(frame, label)
                if success:
                    captured += 1

                if display:
                    preview = frame.copy()
                    cv2.putText(
                        preview,
                        f"{label}: {captured}/{num_examples} - {message}",
                        (10, 30),
                        cv2.FONT_HERSHEY_SIMPLEX,
                        0.6,
                        (0, 255, 0) if success else (0, 0, 255),
                        2,
                    )
                    cv2.imshow(display_window, preview)

                    if cv2.waitKey(1) & 0xFF == 27:  # ESC
                        logger.info("User pressed ESC, stopping teach flow")
                        break
        finally:
            if display:
                cv2.destroyWindow(display_window)

        logger.info(
            f"Teach flow complete for '{label}': {captured}/{num_examples} examples "
            f"({frames_read} frames read)"
        )
        return captured

    def __repr__(self) -> str:
        return f"TrainingService(min_sharpness={self.min_sharpness})"
