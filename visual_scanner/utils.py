"""Vector and image helpers shared by the scanner components."""

from __future__ import annotations

import cv2
import numpy as np


def l2_normalize(vectors: np.ndarray, eps: float = 1e-10) -> np.ndarray:
    """L2-normalize a vector [D] or each row of a matrix [N, D].

    Args:
        vectors: Input array, shape [D] or [N, D]
        eps: Added to the norm to avoid division by zero

    Returns:
        float32 array of the same shape with unit-norm rows.
    """
    vectors = np.asarray(vectors, dtype=np.float32)
    if vectors.ndim == 1:
        return vectors / (np.linalg.norm(vectors) + eps)
    return vectors / (np.linalg.norm(vectors, axis=1, keepdims=True) + eps)


def compute_sharpness(image: np.ndarray) -> float:
    """Compute image sharpness using Laplacian variance.

    A higher variance means more edges and thus a sharper frame. Blurry
    frames make poor reference examples, so the teach flow rejects them.

    Args:
        image: Input image in BGR or grayscale, shape [H, W] or [H, W, 3]

    Returns:
        Sharpness score (Laplacian variance). Higher = sharper.

    Example:
        >>> if compute_sharpness(frame) < 100:
        ...     print("Frame too blurry")
    """
    if len(image.shape) == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image

    laplacian = cv2.Laplacian(gray, cv2.CV_64F)
    return float(laplacian.var())
