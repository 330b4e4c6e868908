"""k-nearest-neighbor classifier over the reference dataset.

Similarity is cosine: stored embeddings and queries are L2-normalized and
searched exhaustively with a FAISS inner-product index, so results are exact
and reproducible. The predicted label is the majority among the k nearest
examples and the confidence is the fraction of those neighbors that agree.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import faiss
import numpy as np

from visual_scanner.dataset import ReferenceDataset
from visual_scanner.exceptions import DimensionMismatch
from visual_scanner.interfaces import NO_CANDIDATE, MatchCandidate
from visual_scanner.logging_config import get_logger
from visual_scanner.utils import l2_normalize

logger = get_logger(__name__)


class KNNClassifier:
    """Majority-vote k-NN classifier.

    The FAISS index is derived from the dataset and rebuilt only when the
    dataset's version changes. The classifier never mutates the dataset.

    Attributes:
        k: Number of voting neighbors. When the dataset holds fewer
           examples, all of them vote.

    Example:
        >>> classifier = KNNClassifier(k=3)
        >>> candidate = classifier.predict(query, dataset)
        >>> print(f"{candidate.label}: {candidate.confidence:.2f}")
    """

    def __init__(self, k: int = 3):
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        self.k = k
        self._index: Optional[faiss.Index] = None
        self._indexed_dataset: Optional[ReferenceDataset] = None
        self._indexed_version = -1
        self._row_labels: List[str] = []

        logger.debug(f"Initialized KNNClassifier with k={k}")

    def _ensure_index(self, dataset: ReferenceDataset) -> faiss.Index:
        """Build the search index for the dataset's current version."""
        if (
            self._index is not None
            and self._indexed_dataset is dataset
            and self._indexed_version == dataset.version
        ):
            return self._index

        matrix, row_labels = dataset.as_matrix()

        # Inner product of unit vectors is cosine similarity
        index = faiss.IndexFlatIP(matrix.shape[1])
        index.add(np.ascontiguousarray(l2_normalize(matrix)))

        self._index = index
        self._indexed_dataset = dataset
        self._indexed_version = dataset.version
        self._row_labels = row_labels

        logger.debug(
            f"Built FAISS index: {index.ntotal} example(s), "
            f"{dataset.num_classes()} label(s), dimension={matrix.shape[1]}"
        )
        return index

    def predict(self, query: np.ndarray, dataset: ReferenceDataset) -> MatchCandidate:
        """Classify a query embedding against the dataset.

        Args:
            query: Embedding, shape [D] or [1, D]
            dataset: Reference dataset (read only)

        Returns:
            MatchCandidate with the majority label and its vote fraction.
            An empty dataset always yields a candidate with label None and
            confidence 0.

        Raises:
            DimensionMismatch: If the query does not have the dataset's dimension.
            ValueError: If the query contains non-finite values.
        """
        if dataset.num_classes() == 0:
            return NO_CANDIDATE

        query = np.asarray(query, dtype=np.float32)
        if query.ndim == 2 and query.shape[0] == 1:
            query = query[0]

        if query.ndim != 1 or query.shape[0] != dataset.dimension:
            raise DimensionMismatch(
                f"Query shape {query.shape} does not match dataset dimension "
                f"{dataset.dimension}"
            )

        if not np.isfinite(query).all():
            raise ValueError("Query embedding contains non-finite values")

        index = self._ensure_index(dataset)
        neighbors = min(self.k, index.ntotal)

        query = np.ascontiguousarray(l2_normalize(query).reshape(1, -1))
        similarities, indices = index.search(query, neighbors)

        votes: Dict[str, int] = {}
        best_similarity: Dict[str, float] = {}
        for similarity, idx in zip(similarities[0], indices[0]):
            if idx < 0:
                continue
            label = self._row_labels[idx]
            votes[label] = votes.get(label, 0) + 1
            best_similarity[label] = max(best_similarity.get(label, -np.inf), float(similarity))

        # Most votes, then closest single neighbor, then label order
        winner = min(votes, key=lambda label: (-votes[label], -best_similarity[label], label))
        confidence = votes[winner] / neighbors

        logger.debug(
            f"Predicted '{winner}' with {votes[winner]}/{neighbors} votes "
            f"(nearest similarity={best_similarity[winner]:.3f})"
        )

        return MatchCandidate(label=winner, confidence=float(min(confidence, 1.0)))

    def __repr__(self) -> str:
        size = self._index.ntotal if self._index is not None else 0
        return f"KNNClassifier(k={self.k}, indexed={size})"
