"""Reference dataset store for the nearest-neighbor classifier.

The store keeps, per label, the ordered embeddings collected while teaching
the scanner. It is the only long-lived mutable state of the engine and can
be serialized into a self-describing JSON document:

    {
      "format": "visual-scanner-dataset",
      "version": 1,
      "dimension": 1024,
      "labels": {"art-12": {"count": 5, "vectors": "<base64 float32 LE>"}}
    }

The embedding dimension is recorded once per document and validated on load.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from visual_scanner.exceptions import CorruptionError, DimensionMismatch
from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)

FORMAT_TAG = "visual-scanner-dataset"
FORMAT_VERSION = 1

# Little-endian float32, independent of the host byte order
_WIRE_DTYPE = np.dtype("<f4")


@dataclass(frozen=True)
class SerializedEntry:
    """Examples of one label in wire form.

    Attributes:
        count: Number of embeddings
        vectors: Flat little-endian float32 buffer of count * D values
    """

    count: int
    vectors: bytes


@dataclass(frozen=True)
class SerializedDataset:
    """Persistable representation of a ReferenceDataset.

    Attributes:
        dimension: Embedding dimension D (0 for a store that never saw an example)
        entries: Mapping label -> SerializedEntry
    """

    dimension: int
    entries: Dict[str, SerializedEntry] = field(default_factory=dict)

    def vectors(self, label: str) -> np.ndarray:
        """Decode the embeddings of a label, shape [count, D]."""
        entry = self.entries[label]
        flat = np.frombuffer(entry.vectors, dtype=_WIRE_DTYPE)
        return flat.reshape(entry.count, self.dimension).astype(np.float32)

    def to_bytes(self) -> bytes:
        """Encode as a UTF-8 JSON document."""
        doc = {
            "format": FORMAT_TAG,
            "version": FORMAT_VERSION,
            "dimension": self.dimension,
            "labels": {
                label: {
                    "count": entry.count,
                    "vectors": base64.b64encode(entry.vectors).decode("ascii"),
                }
                for label, entry in self.entries.items()
            },
        }
        return json.dumps(doc, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, blob: Union[bytes, str]) -> SerializedDataset:
        """Parse and validate a JSON document produced by to_bytes().

        Args:
            blob: Serialized document

        Returns:
            Validated SerializedDataset.

        Raises:
            CorruptionError: If the document is malformed, truncated, has
                inconsistent lengths or contains non-finite numbers.
        """
        try:
            doc = json.loads(blob)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptionError(f"Dataset is not valid JSON: {e}") from e
        except RecursionError as e:
            raise CorruptionError("Dataset JSON is nested too deeply") from e

        if not isinstance(doc, dict) or doc.get("format") != FORMAT_TAG:
            raise CorruptionError("Missing or unknown dataset format tag")

        if doc.get("version") != FORMAT_VERSION:
            raise CorruptionError(f"Unsupported dataset version: {doc.get('version')!r}")

        dimension = doc.get("dimension")
        if not _is_int(dimension) or dimension < 0:
            raise CorruptionError(f"Invalid dimension: {dimension!r}")

        labels = doc.get("labels")
        if not isinstance(labels, dict):
            raise CorruptionError("'labels' must be an object")

        if labels and dimension == 0:
            raise CorruptionError("Dataset has examples but no dimension")

        entries: Dict[str, SerializedEntry] = {}
        for label, item in labels.items():
            if not isinstance(item, dict):
                raise CorruptionError(f"Entry for '{label}' must be an object")

            count = item.get("count")
            if not _is_int(count) or count < 1:
                raise CorruptionError(f"Invalid count for '{label}': {count!r}")

            encoded = item.get("vectors")
            if not isinstance(encoded, str):
                raise CorruptionError(f"Vectors for '{label}' must be a base64 string")

            try:
                raw = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as e:
                raise CorruptionError(f"Vectors for '{label}' are not valid base64") from e

            expected = count * dimension * _WIRE_DTYPE.itemsize
            if len(raw) != expected:
                raise CorruptionError(
                    f"Vectors for '{label}' have {len(raw)} bytes, "
                    f"expected {expected} ({count} x {dimension} float32)"
                )

            if not np.isfinite(np.frombuffer(raw, dtype=_WIRE_DTYPE)).all():
                raise CorruptionError(f"Vectors for '{label}' contain non-finite values")

            entries[label] = SerializedEntry(count=count, vectors=raw)

        return cls(dimension=dimension, entries=entries)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ReferenceDataset:
    """Per-label collections of reference embeddings.

    Every embedding has the same dimension D. D is either given at
    construction or established by the first example added.

    Attributes:
        version: Counter bumped on every mutation, used to cache search indexes

    Example:
        >>> dataset = ReferenceDataset(dimension=1024)
        >>> dataset.add_example("art-12", embedding)
        >>> blob = dataset.serialize().to_bytes()
        >>> restored = ReferenceDataset.deserialize(blob)
        >>> restored.num_classes()
        1
    """

    def __init__(self, dimension: Optional[int] = None):
        if dimension is not None and dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")

        self._dimension = dimension
        self._examples: Dict[str, List[np.ndarray]] = {}
        self.version = 0
        self._matrix_cache: Optional[Tuple[int, np.ndarray, List[str]]] = None

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimension D, or None if not yet established."""
        return self._dimension

    @property
    def labels(self) -> List[str]:
        """Labels with at least one example, sorted."""
        return sorted(self._examples)

    def add_example(self, label: str, embedding: np.ndarray) -> None:
        """Append one embedding to a label's collection.

        Args:
            label: Entity identifier
            embedding: Embedding, shape [D]

        Raises:
            DimensionMismatch: If the embedding is not a vector of length D.
        """
        vector = np.asarray(embedding, dtype=np.float32)

        if vector.ndim != 1:
            raise DimensionMismatch(
                f"Expected a 1-D embedding, got shape {vector.shape}"
            )

        if self._dimension is None:
            self._dimension = int(vector.shape[0])
            logger.debug(f"Established dataset dimension D={self._dimension}")
        elif vector.shape[0] != self._dimension:
            raise DimensionMismatch(
                f"Embedding for '{label}' has dimension {vector.shape[0]}, "
                f"dataset dimension is {self._dimension}"
            )

        # Stored embeddings are immutable
        vector = vector.copy()
        vector.flags.writeable = False

        self._examples.setdefault(label, []).append(vector)
        self.version += 1

        logger.debug(
            f"Added example for '{label}' (total: {len(self._examples[label])})"
        )

    def remove_label(self, label: str) -> None:
        """Drop every example of a label. No-op when the label is absent."""
        removed = self._examples.pop(label, None)
        if removed is None:
            return

        self.version += 1
        logger.info(f"Removed label '{label}' ({len(removed)} example(s))")

    def clear(self) -> None:
        """Drop every example, keeping the dimension."""
        if self._examples:
            self._examples.clear()
            self.version += 1

    def num_classes(self) -> int:
        """Number of distinct labels with at least one example."""
        return len(self._examples)

    def num_examples(self) -> int:
        """Total number of stored embeddings."""
        return sum(len(embs) for embs in self._examples.values())

    def example_counts(self) -> Dict[str, int]:
        """Number of examples per label."""
        return {label: len(self._examples[label]) for label in self.labels}

    def examples(self, label: str) -> np.ndarray:
        """Embeddings of a label, shape [N, D]; empty when the label is absent."""
        embs = self._examples.get(label)
        if not embs:
            return np.zeros((0, self._dimension or 0), dtype=np.float32)
        return np.stack(embs, axis=0)

    def under_represented(self, k: int) -> List[str]:
        """Labels with fewer than k examples."""
        return [label for label, count in self.example_counts().items() if count < k]

    def as_matrix(self) -> Tuple[np.ndarray, List[str]]:
        """Flatten the store into parallel arrays.

        Rows are ordered by sorted label, then by insertion order, so the
        layout is deterministic for a given content.

        Returns:
            Tuple of (matrix [N, D] float32, row labels list of length N).
        """
        if self._matrix_cache is not None and self._matrix_cache[0] == self.version:
            return self._matrix_cache[1], self._matrix_cache[2]

        rows: List[np.ndarray] = []
        row_labels: List[str] = []
        for label in self.labels:
            for emb in self._examples[label]:
                rows.append(emb)
                row_labels.append(label)

        if rows:
            matrix = np.stack(rows, axis=0)
        else:
            matrix = np.zeros((0, self._dimension or 0), dtype=np.float32)

        self._matrix_cache = (self.version, matrix, row_labels)
        return matrix, row_labels

    def serialize(self) -> SerializedDataset:
        """Snapshot the current state into its persistable form."""
        entries = {
            label: SerializedEntry(
                count=len(self._examples[label]),
                vectors=np.stack(self._examples[label]).astype(_WIRE_DTYPE).tobytes(),
            )
            for label in self.labels
        }
        return SerializedDataset(dimension=self._dimension or 0, entries=entries)

    @classmethod
    def from_serialized(cls, serialized: SerializedDataset) -> ReferenceDataset:
        """Build a store from an already validated SerializedDataset."""
        dataset = cls(dimension=serialized.dimension or None)
        for label in sorted(serialized.entries):
            for emb in serialized.vectors(label):
                dataset.add_example(label, emb)
        return dataset

    @classmethod
    def deserialize(
        cls,
        blob: Union[bytes, str, SerializedDataset],
        expected_dimension: Optional[int] = None,
    ) -> ReferenceDataset:
        """Restore a store, failing soft on corrupted input.

        A corrupted document never propagates: the error is logged and an
        empty dataset is returned so the scanner can still start.

        Args:
            blob: Output of SerializedDataset.to_bytes(), or a SerializedDataset
            expected_dimension: Dimension of the current model, if known.
                A non-empty document with a different dimension counts as
                corrupted; an empty one takes this dimension.

        Returns:
            Restored dataset, or an empty one.
        """
        try:
            if isinstance(blob, SerializedDataset):
                serialized = blob
            else:
                serialized = SerializedDataset.from_bytes(blob)

            if expected_dimension is not None and serialized.dimension != expected_dimension:
                if serialized.entries:
                    raise CorruptionError(
                        f"Dataset dimension {serialized.dimension} does not match "
                        f"model dimension {expected_dimension}"
                    )
                # Nothing was taught yet; adopt the current model's dimension
                serialized = SerializedDataset(dimension=expected_dimension)

            dataset = cls.from_serialized(serialized)

        except (CorruptionError, ValueError, TypeError, RecursionError) as e:
            logger.error(f"Discarding corrupted dataset, starting empty: {e}")
            return cls(dimension=expected_dimension)

        logger.info(
            f"Restored dataset: {dataset.num_classes()} label(s), "
            f"{dataset.num_examples()} example(s), dimension={dataset.dimension}"
        )
        return dataset

    def __len__(self) -> int:
        return self.num_examples()

    def __repr__(self) -> str:
        return (
            f"ReferenceDataset(dim={self._dimension}, "
            f"labels={self.num_classes()}, examples={self.num_examples()})"
        )
