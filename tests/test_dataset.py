"""Unit tests for the reference dataset store and its wire format."""

from __future__ import annotations

import base64
import json

import numpy as np
import pytest

from conftest import DIM, cluster, unit
from visual_scanner.dataset import FORMAT_TAG, ReferenceDataset, SerializedDataset
from visual_scanner.exceptions import CorruptionError, DimensionMismatch


def test_first_example_establishes_dimension():
    """Test that D comes from the first example when not given."""
    dataset = ReferenceDataset()
    assert dataset.dimension is None

    dataset.add_example("art-12", unit(0))

    assert dataset.dimension == DIM
    assert dataset.num_classes() == 1
    assert dataset.num_examples() == 1


def test_add_wrong_dimension_raises(clustered_dataset):
    """Test that a vector of the wrong length is rejected."""
    with pytest.raises(DimensionMismatch):
        clustered_dataset.add_example("art-12", np.ones(DIM + 1, dtype=np.float32))

    # Nothing was added
    assert clustered_dataset.example_counts() == {"art-12": 5, "art-7": 5}


def test_add_matrix_raises():
    """Test that a 2-D array is not accepted as one example."""
    dataset = ReferenceDataset(dimension=DIM)

    with pytest.raises(DimensionMismatch):
        dataset.add_example("art-12", np.ones((2, DIM), dtype=np.float32))


def test_stored_examples_are_immutable():
    """Test that the store keeps its own read-only copy."""
    dataset = ReferenceDataset()
    emb = unit(3)
    dataset.add_example("art-12", emb)

    emb[3] = 42.0  # Caller mutates its array afterwards

    assert dataset.examples("art-12")[0, 3] == 1.0

    matrix, _ = dataset.as_matrix()
    with pytest.raises(ValueError):
        dataset._examples["art-12"][0][3] = 7.0
    assert matrix[0, 3] == 1.0


def test_remove_label():
    """Test removing labels, including absent ones."""
    dataset = ReferenceDataset()
    dataset.add_example("art-12", unit(0))
    dataset.add_example("art-7", unit(1))
    version = dataset.version

    dataset.remove_label("missing")
    assert dataset.version == version

    dataset.remove_label("art-12")
    assert dataset.labels == ["art-7"]
    assert dataset.version == version + 1
    assert dataset.examples("art-12").shape == (0, DIM)


def test_clear_keeps_dimension(clustered_dataset):
    """Test that clear() drops examples but not D."""
    clustered_dataset.clear()

    assert clustered_dataset.num_classes() == 0
    assert clustered_dataset.dimension == DIM


def test_as_matrix_is_ordered_by_label():
    """Test deterministic row layout."""
    dataset = ReferenceDataset()
    dataset.add_example("b", unit(1))
    dataset.add_example("a", unit(0))
    dataset.add_example("b", unit(2))

    matrix, row_labels = dataset.as_matrix()

    assert row_labels == ["a", "b", "b"]
    np.testing.assert_array_equal(matrix[0], unit(0))
    np.testing.assert_array_equal(matrix[2], unit(2))


def test_under_represented(clustered_dataset):
    """Test detection of labels with fewer than k examples."""
    clustered_dataset.add_example("art-3", unit(5))

    assert clustered_dataset.under_represented(3) == ["art-3"]
    assert clustered_dataset.under_represented(1) == []


def test_serialize_round_trip(clustered_dataset):
    """Test that a restored dataset has identical content."""
    blob = clustered_dataset.serialize().to_bytes()
    restored = ReferenceDataset.deserialize(blob)

    assert restored.dimension == DIM
    assert restored.example_counts() == clustered_dataset.example_counts()
    for label in clustered_dataset.labels:
        np.testing.assert_array_equal(
            restored.examples(label), clustered_dataset.examples(label)
        )

    # Serializing again gives the same document
    assert restored.serialize().to_bytes() == blob


def test_wire_format_is_self_describing(clustered_dataset):
    """Test the JSON layout of the serialized document."""
    doc = json.loads(clustered_dataset.serialize().to_bytes())

    assert doc["format"] == FORMAT_TAG
    assert doc["version"] == 1
    assert doc["dimension"] == DIM
    assert doc["labels"]["art-12"]["count"] == 5

    raw = base64.b64decode(doc["labels"]["art-12"]["vectors"])
    assert len(raw) == 5 * DIM * 4


def test_empty_dataset_round_trip():
    """Test that an empty store with a known D survives serialization."""
    blob = ReferenceDataset(dimension=DIM).serialize().to_bytes()
    restored = ReferenceDataset.deserialize(blob)

    assert restored.num_classes() == 0
    assert restored.dimension == DIM


def _doc(clustered_dataset) -> dict:
    return json.loads(clustered_dataset.serialize().to_bytes())


@pytest.mark.parametrize(
    "corrupt",
    [
        lambda doc: doc.update(format="something-else"),
        lambda doc: doc.update(version=99),
        lambda doc: doc.update(dimension="16"),
        lambda doc: doc.update(labels=[]),
        lambda doc: doc["labels"]["art-12"].update(count=6),
        lambda doc: doc["labels"]["art-12"].update(count=0),
        lambda doc: doc["labels"]["art-12"].update(vectors="not base64!"),
        lambda doc: doc["labels"]["art-12"].update(
            vectors=doc["labels"]["art-12"]["vectors"][:40]
        ),
        lambda doc: doc["labels"]["art-12"].update(
            vectors=base64.b64encode(
                np.full(5 * DIM, np.nan, dtype="<f4").tobytes()
            ).decode("ascii")
        ),
    ],
    ids=[
        "format-tag",
        "version",
        "dimension-type",
        "labels-type",
        "count-too-high",
        "count-zero",
        "bad-base64",
        "truncated",
        "non-finite",
    ],
)
def test_from_bytes_rejects_corruption(clustered_dataset, corrupt):
    """Test that malformed documents raise CorruptionError."""
    doc = _doc(clustered_dataset)
    corrupt(doc)

    with pytest.raises(CorruptionError):
        SerializedDataset.from_bytes(json.dumps(doc).encode("utf-8"))


def test_from_bytes_rejects_garbage():
    """Test that non-JSON input raises CorruptionError."""
    with pytest.raises(CorruptionError):
        SerializedDataset.from_bytes(b"\x00\xffnot json")


def test_deserialize_fails_soft_to_empty(clustered_dataset):
    """Test that a corrupted blob yields an empty dataset instead of raising."""
    blob = clustered_dataset.serialize().to_bytes()[:-20]

    restored = ReferenceDataset.deserialize(blob, expected_dimension=DIM)

    assert restored.num_classes() == 0
    assert restored.dimension == DIM


def test_deserialize_rejects_other_model_dimension(clustered_dataset):
    """Test that a dataset built for another model is discarded."""
    blob = clustered_dataset.serialize().to_bytes()

    restored = ReferenceDataset.deserialize(blob, expected_dimension=DIM * 2)

    assert restored.num_classes() == 0
    assert restored.dimension == DIM * 2


def test_from_serialized_keeps_insertion_order(rng):
    """Test that per-label example order survives the round trip."""
    dataset = ReferenceDataset()
    embs = cluster(2, 4, rng)
    for emb in embs:
        dataset.add_example("art-1", emb)

    restored = ReferenceDataset.from_serialized(dataset.serialize())

    np.testing.assert_array_equal(restored.examples("art-1"), np.stack(embs))


def test_from_bytes_rejects_deep_nesting():
    """Test that pathologically nested JSON is reported as corruption."""
    blob = b"[" * 100000 + b"]" * 100000

    with pytest.raises(CorruptionError):
        SerializedDataset.from_bytes(blob)

    restored = ReferenceDataset.deserialize(blob, expected_dimension=DIM)
    assert restored.num_classes() == 0
    assert restored.dimension == DIM


def test_empty_dataset_adopts_model_dimension():
    """Test that an empty store saved for another model can still be taught."""
    blob = ReferenceDataset(dimension=8).serialize().to_bytes()

    restored = ReferenceDataset.deserialize(blob, expected_dimension=DIM)

    assert restored.dimension == DIM
    restored.add_example("art-1", unit(0))
    assert restored.example_counts() == {"art-1": 1}
