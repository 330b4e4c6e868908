"""Unit tests for the camera resource manager."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from conftest import ScriptedSource, unit
from visual_scanner.camera import CameraManager, CameraState
from visual_scanner.exceptions import PermissionDenied


@pytest.fixture
def source():
    return ScriptedSource([unit(0)] * 3)


def test_start_and_stop(source):
    """Test the RELEASED -> ACTIVE -> RELEASED cycle."""
    camera = CameraManager(lambda: source)
    assert camera.state == CameraState.RELEASED

    assert camera.start() is source
    assert camera.state == CameraState.ACTIVE
    assert camera.is_active

    camera.stop()
    assert camera.state == CameraState.RELEASED
    assert camera.source is None
    assert source.release_calls == 1


def test_start_is_idempotent(source):
    """Test that a second start() reuses the live source."""
    factory = Mock(return_value=source)
    camera = CameraManager(factory)

    first = camera.start()
    second = camera.start()

    assert first is second
    factory.assert_called_once()


def test_stop_is_idempotent(source):
    """Test that repeated stop() releases only once."""
    camera = CameraManager(lambda: source)
    camera.start()

    camera.stop()
    camera.stop()

    assert source.release_calls == 1


def test_permission_denied():
    """Test that a refused camera leaves no handle and can be retried."""
    factory = Mock(side_effect=PermissionDenied("denied by user"))
    camera = CameraManager(factory)

    with pytest.raises(PermissionDenied):
        camera.start()

    assert camera.state == CameraState.RELEASED
    assert camera.source is None

    factory.side_effect = None
    factory.return_value = ScriptedSource([unit(0)])
    camera.start()
    assert camera.is_active


def test_source_not_opened_is_denied():
    """Test that a source that failed to open is released and reported."""
    closed = ScriptedSource([])
    closed.release()
    camera = CameraManager(lambda: closed)

    with pytest.raises(PermissionDenied):
        camera.start()

    assert camera.state == CameraState.RELEASED
    assert closed.release_calls == 2


def test_factory_error_propagates():
    """Test that unexpected factory errors propagate without leaking state."""
    camera = CameraManager(Mock(side_effect=RuntimeError("driver crashed")))

    with pytest.raises(RuntimeError):
        camera.start()

    assert camera.state == CameraState.RELEASED


def test_reentrant_stop():
    """Test that stop() called while releasing is a no-op."""
    camera = CameraManager(lambda: source)
    source = Mock()
    source.is_opened = True
    source.release.side_effect = lambda: camera.stop()

    camera.start()
    camera.stop()

    source.release.assert_called_once()
    assert camera.state == CameraState.RELEASED


def test_context_manager_releases_on_error(source):
    """Test that the camera is released when the body raises."""
    camera = CameraManager(lambda: source)

    with pytest.raises(KeyError):
        with camera as live:
            live.read()
            raise KeyError("boom")

    assert camera.state == CameraState.RELEASED
    assert source.release_calls == 1
