"""Unit tests for the teach flow."""

from __future__ import annotations

from unittest.mock import Mock

import numpy as np
import pytest

from conftest import ScriptedSource, unit
from visual_scanner.enrollment import TrainingService


@pytest.fixture
def mock_sink():
    """Create a mock engine that accepts examples."""
    sink = Mock()
    sink.capture_example.side_effect = lambda label, frame: unit(0)
    return sink


@pytest.fixture
def training_service(mock_sink):
    """Create a training service with a mock sink."""
    return TrainingService(mock_sink, min_sharpness=100.0)


@pytest.fixture
def sharp_frame():
    """Create a frame with plenty of edges (high Laplacian variance)."""
    frame = np.random.default_rng(0).integers(0, 255, (120, 160, 3), dtype=np.uint8)
    frame[50:60, :] = 255
    frame[:, 50:60] = 0
    return frame


@pytest.fixture
def blurry_frame():
    """Create a flat frame (zero Laplacian variance)."""
    return np.full((120, 160, 3), 128, dtype=np.uint8)


def test_process_frame_blurry(training_service, mock_sink, blurry_frame):
    """Test that blurry frames are rejected."""
    success, embedding, message = training_service.process_frame(blurry_frame, "art-12")

    assert not success
    assert embedding is None
    assert "Low sharpness" in message
    mock_sink.capture_example.assert_not_called()


def test_process_frame_empty(training_service, mock_sink):
    """Test that empty frames are rejected."""
    success, embedding, message = training_service.process_frame(
        np.zeros((0, 0, 3), dtype=np.uint8), "art-12"
    )

    assert not success
    assert "Empty" in message
    mock_sink.capture_example.assert_not_called()


def test_process_frame_success(training_service, mock_sink, sharp_frame):
    """Test that sharp frames become examples."""
    success, embedding, message = training_service.process_frame(sharp_frame, "art-12")

    assert success
    np.testing.assert_array_equal(embedding, unit(0))
    assert "Captured" in message
    mock_sink.capture_example.assert_called_once_with("art-12", sharp_frame)


def test_enroll_from_source_reaches_target(training_service, mock_sink, sharp_frame, blurry_frame):
    """Test that enrollment stops once enough examples are captured."""
    source = ScriptedSource([blurry_frame, sharp_frame, sharp_frame, sharp_frame, sharp_frame])

    captured = training_service.enroll_from_source(source, "art-12", num_examples=3)

    assert captured == 3
    assert mock_sink.capture_example.call_count == 3
    assert source.frames_read == 4


def test_enroll_from_source_exhausted(training_service, sharp_frame):
    """Test that enrollment ends when the source runs out of frames."""
    source = ScriptedSource([sharp_frame, sharp_frame])

    captured = training_service.enroll_from_source(source, "art-12", num_examples=15)

    assert captured == 2
