"""MobileNet feature extractor for frame embeddings.

This module runs a pretrained MobileNet graph (exported to ONNX, classifier
head removed) with ONNX Runtime and turns camera frames into fixed-length
feature vectors. MobileNet v1 yields 1024-dimensional embeddings.
"""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import onnxruntime as ort

from visual_scanner.exceptions import DimensionMismatch, ModelLoadError, ModelNotReady
from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)


class MobileNetEmbedder:
    """Extract dense embeddings from frames with a MobileNet ONNX model.

    The model is treated as a black box: its input layout (NCHW or NHWC) is
    read from the graph and its embedding dimension is measured with a
    warm-up inference at load time.

    Attributes:
        model_path: Path to the .onnx file
        ctx_id: Compute context (-1=CPU, 0+=GPU)
        input_size: Square input resolution of the model

    Example:
        >>> embedder = MobileNetEmbedder("models/mobilenet_v1.onnx")
        >>> embedder.load()
        >>> embedding = embedder.extract(frame)
        >>> embedding.shape
        (1024,)
    """

    def __init__(self, model_path: str | Path, ctx_id: int = -1, input_size: int = 224):
        self.model_path = Path(model_path)
        self.ctx_id = ctx_id
        self.input_size = input_size

        self._session: ort.InferenceSession | None = None
        self._input_name = ""
        self._channels_first = True
        self._dimension = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def is_ready(self) -> bool:
        return self._session is not None

    def load(self) -> None:
        """Load the ONNX model and measure its embedding dimension.

        Raises:
            ModelLoadError: If the file is missing or ONNX Runtime rejects it.
        """
        if not self.model_path.exists():
            raise ModelLoadError(f"Model file not found: {self.model_path}")

        providers = (
            ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if self.ctx_id >= 0
            else ["CPUExecutionProvider"]
        )

        logger.info(f"Loading feature model from {self.model_path} (providers={providers})")

        try:
            session = ort.InferenceSession(str(self.model_path), providers=providers)
            model_input = session.get_inputs()[0]

            shape = model_input.shape
            if len(shape) != 4:
                raise ModelLoadError(f"Expected a 4-D image input, got shape {shape}")

            self._input_name = model_input.name
            self._channels_first = shape[1] == 3

            # Warm-up also tells us the embedding dimension
            warmup = np.zeros((1, self.input_size, self.input_size, 3), dtype=np.float32)
            if self._channels_first:
                warmup = warmup.transpose(0, 3, 1, 2)
            output = session.run(None, {self._input_name: warmup})[0]

        except ModelLoadError:
            raise
        except Exception as e:
            logger.error(f"Failed to load feature model: {e}")
            raise ModelLoadError(f"Feature model initialization failed: {e}") from e

        self._dimension = int(np.asarray(output).size)
        self._session = session

        logger.info(
            f"Feature model ready: dimension={self._dimension}, "
            f"layout={'NCHW' if self._channels_first else 'NHWC'}, "
            f"device={'GPU' if self.ctx_id >= 0 else 'CPU'}"
        )

    def _preprocess(self, frame_bgr: np.ndarray) -> np.ndarray:
        """Resize, convert to RGB and scale to [-1, 1] as MobileNet expects."""
        resized = cv2.resize(
            frame_bgr, (self.input_size, self.input_size), interpolation=cv2.INTER_AREA
        )
        rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
        blob = (rgb.astype(np.float32) / 127.5 - 1.0)[np.newaxis]
        if self._channels_first:
            blob = blob.transpose(0, 3, 1, 2)
        return np.ascontiguousarray(blob)

    def extract(self, frame_bgr: np.ndarray) -> np.ndarray:
        """Compute the embedding of one frame.

        Args:
            frame_bgr: Frame in BGR format, shape [H, W, 3], dtype uint8

        Returns:
            Embedding, shape [D], dtype float32 (not normalized).

        Raises:
            ModelNotReady: If load() has not completed.
            ValueError: If the frame is not a 3-channel image.
        """
        if self._session is None:
            raise ModelNotReady("Feature model is not loaded; call load() first")

        if frame_bgr is None or frame_bgr.ndim != 3 or frame_bgr.shape[2] != 3:
            shape = None if frame_bgr is None else frame_bgr.shape
            raise ValueError(f"Expected a BGR frame of shape [H, W, 3], got {shape}")

        output = self._session.run(None, {self._input_name: self._preprocess(frame_bgr)})[0]
        embedding = np.asarray(output, dtype=np.float32).reshape(-1)

        if embedding.shape[0] != self._dimension:
            raise DimensionMismatch(
                f"Model produced {embedding.shape[0]} values, expected {self._dimension}"
            )

        return embedding

    def __repr__(self) -> str:
        status = f"dim={self._dimension}" if self.is_ready else "not loaded"
        device = "GPU" if self.ctx_id >= 0 else "CPU"
        return f"MobileNetEmbedder({self.model_path.name}, {status}, device={device})"
