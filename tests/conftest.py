"""Shared fixtures and scripted stand-ins for scanner tests."""

from __future__ import annotations

import threading
import time
from typing import Dict, List, Optional

import numpy as np
import pytest

from visual_scanner.dataset import ReferenceDataset
from visual_scanner.exceptions import ModelNotReady

DIM = 16


def unit(index: int, dim: int = DIM) -> np.ndarray:
    """Unit vector along one axis."""
    vec = np.zeros(dim, dtype=np.float32)
    vec[index] = 1.0
    return vec


def cluster(index: int, count: int, rng: np.random.Generator, noise: float = 0.05) -> List[np.ndarray]:
    """Embeddings scattered tightly around one axis."""
    embs = []
    for _ in range(count):
        emb = unit(index) + rng.normal(0, noise, DIM).astype(np.float32)
        embs.append(emb / np.linalg.norm(emb))
    return embs


class ScriptedExtractor:
    """Feature model whose frames already are embeddings."""

    def __init__(self, dimension: int = DIM, load_error: Optional[Exception] = None):
        self._target_dimension = dimension
        self._dimension = 0
        self.load_error = load_error
        self.load_calls = 0
        self.extract_calls = 0

        # Concurrency counters
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.extract_delay = 0.0

        # Optional gates, in order: signalled when extract starts, awaited
        # before extract returns, awaited before load returns
        self.extract_started = threading.Event()
        self.extract_gate: Optional[threading.Event] = None
        self.load_gate: Optional[threading.Event] = None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def is_ready(self) -> bool:
        return self._dimension > 0

    def load(self) -> None:
        self.load_calls += 1
        if self.load_gate is not None:
            self.load_gate.wait(5)
        if self.load_error is not None:
            raise self.load_error
        self._dimension = self._target_dimension

    def extract(self, frame: np.ndarray) -> np.ndarray:
        if not self.is_ready:
            raise ModelNotReady("not loaded")

        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.extract_calls += 1

        try:
            self.extract_started.set()
            if self.extract_gate is not None:
                self.extract_gate.wait(5)
            if self.extract_delay:
                time.sleep(self.extract_delay)
            return np.asarray(frame, dtype=np.float32).reshape(-1)
        finally:
            with self._lock:
                self.active -= 1


class ScriptedSource:
    """Frame source replaying a fixed list of frames, closing after the last."""

    def __init__(self, frames: List[np.ndarray]):
        self.frames = list(frames)
        self.frames_read = 0
        self.release_calls = 0
        self.read_threads = set()
        self._opened = True

    def read(self):
        self.read_threads.add(threading.get_ident())
        if not self._opened or not self.frames:
            self._opened = False
            return False, None

        frame = self.frames.pop(0)
        self.frames_read += 1
        if not self.frames:
            self._opened = False
        return True, frame

    def release(self) -> None:
        self.release_calls += 1
        self._opened = False

    @property
    def is_opened(self) -> bool:
        return self._opened


class MemoryStorage:
    """Dataset storage keeping blobs in a dict."""

    def __init__(self, blobs: Optional[Dict[str, bytes]] = None):
        self.blobs = dict(blobs or {})

    def load(self, tenant_id: str) -> Optional[bytes]:
        return self.blobs.get(tenant_id)

    def save(self, tenant_id: str, blob: bytes) -> None:
        self.blobs[tenant_id] = blob


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def clustered_dataset(rng):
    """Dataset with 'art-12' around axis 0 and 'art-7' around axis 1."""
    dataset = ReferenceDataset(dimension=DIM)
    for emb in cluster(0, 5, rng):
        dataset.add_example("art-12", emb)
    for emb in cluster(1, 5, rng):
        dataset.add_example("art-7", emb)
    return dataset


@pytest.fixture
def extractor():
    return ScriptedExtractor()
