"""Core interfaces and data structures for the visual scanner.

This module defines the data classes exchanged between scanner components
and the Protocols that let the engine run against real hardware and models
or against scripted stand-ins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, runtime_checkable

import numpy as np


@dataclass(frozen=True)
class EntityMetadata:
    """Human-facing metadata of a cataloged entity (artwork, exhibit).

    Attributes:
        id: Entity identifier, equal to the classifier label
        display_name: Title shown to visitors
        known: False only for the UNKNOWN_ENTITY sentinel
    """

    id: str
    display_name: str
    known: bool = True


UNKNOWN_ENTITY = EntityMetadata(id="", display_name="Unknown entity", known=False)


@dataclass(frozen=True)
class MatchCandidate:
    """Raw output of one classification cycle.

    Attributes:
        label: Predicted label, or None when the dataset is empty
        confidence: Fraction of neighbors agreeing with the label (0.0 to 1.0)
    """

    label: Optional[str]
    confidence: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {self.confidence}")

    @property
    def is_empty(self) -> bool:
        return self.label is None

    def __repr__(self) -> str:
        return f"MatchCandidate(label={self.label!r}, confidence={self.confidence:.3f})"


NO_CANDIDATE = MatchCandidate(label=None, confidence=0.0)


@dataclass(frozen=True)
class StableMatch:
    """A candidate that survived the hysteresis policy.

    Attributes:
        label: Matched label
        confidence: Confidence of the cycle that confirmed the match
        entity: Metadata resolved for the label (may be UNKNOWN_ENTITY)
    """

    label: str
    confidence: float
    entity: EntityMetadata = UNKNOWN_ENTITY

    def __repr__(self) -> str:
        return (
            f"StableMatch(label={self.label!r}, confidence={self.confidence:.3f}, "
            f"entity={self.entity.display_name!r})"
        )


@runtime_checkable
class FeatureExtractor(Protocol):
    """Protocol for the pretrained feature model.

    A FeatureExtractor maps one video frame to one fixed-length embedding.
    """

    @property
    def dimension(self) -> int:
        """Embedding dimension D (valid after load())."""
        ...

    @property
    def is_ready(self) -> bool:
        """True once load() completed."""
        ...

    def load(self) -> None:
        """Load the backing model.

        Raises:
            ModelLoadError: If the model asset is missing or invalid.
        """
        ...

    def extract(self, frame_bgr: np.ndarray) -> np.ndarray:
        """Compute the embedding of a frame.

        Args:
            frame_bgr: Frame in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            Embedding, shape [D], dtype float32.

        Raises:
            ModelNotReady: If called before load().
        """
        ...


@runtime_checkable
class FrameSource(Protocol):
    """Protocol for frame sources (webcam, video file, scripted frames)."""

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """Read the frame the source is currently showing.

        Returns:
            Tuple of (success, frame); frame is None when success is False.
        """
        ...

    def release(self) -> None:
        """Release the underlying device handle."""
        ...

    @property
    def is_opened(self) -> bool:
        """True while the source can still deliver frames."""
        ...


@runtime_checkable
class EntityCatalog(Protocol):
    """Protocol for the bulk metadata fetch used by the match resolver."""

    def list_entities(self, tenant_id: str) -> List[EntityMetadata]:
        """Return every entity of a tenant."""
        ...


@runtime_checkable
class DatasetStorage(Protocol):
    """Protocol for local persistent storage of serialized datasets."""

    def load(self, tenant_id: str) -> Optional[bytes]:
        """Return the stored blob for a tenant, or None if nothing was saved."""
        ...

    def save(self, tenant_id: str, blob: bytes) -> None:
        """Store a blob for a tenant, replacing any previous one."""
        ...
