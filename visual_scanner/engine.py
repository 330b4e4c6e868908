"""Scan loop controller and caller-facing engine API.

The engine is a cooperative asyncio state machine:

    IDLE -> MODEL_LOADING -> READY -> SCANNING <-> MATCHED -> STOPPED
                          \\-> FAILED

One scan cycle reads the frame the camera is currently showing, computes its
embedding and classifies it in a worker thread, then feeds the result to the
hysteresis policy. The next cycle is scheduled only after the previous one
completed, so exactly one inference is in flight at any time and frames that
arrive meanwhile are simply not sampled.

Example:
    >>> engine = create_engine(get_config())
    >>> engine.on_match(lambda match: print(match.entity.display_name))
    >>> await engine.load()
    >>> await engine.begin()
    >>> ...
    >>> engine.stop()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from visual_scanner.camera import CameraManager
from visual_scanner.classifier import KNNClassifier
from visual_scanner.dataset import ReferenceDataset, SerializedDataset
from visual_scanner.exceptions import DatasetLocked, ModelLoadError, NotReady
from visual_scanner.interfaces import (
    NO_CANDIDATE,
    DatasetStorage,
    EntityCatalog,
    FeatureExtractor,
    FrameSource,
    MatchCandidate,
    StableMatch,
)
from visual_scanner.logging_config import get_logger
from visual_scanner.policy import HysteresisPolicy, PolicyTransition
from visual_scanner.resolver import MatchResolver

logger = get_logger(__name__)

MatchCallback = Callable[[StableMatch], None]
NoMatchCallback = Callable[[], None]


class ScannerState(str, Enum):
    IDLE = "idle"
    MODEL_LOADING = "model_loading"
    READY = "ready"
    SCANNING = "scanning"
    MATCHED = "matched"
    STOPPED = "stopped"
    FAILED = "failed"


_LOCKED_STATES = (ScannerState.MODEL_LOADING, ScannerState.SCANNING, ScannerState.MATCHED)


@dataclass
class ScanSession:
    """Runtime state of one begin()..stop() span."""

    source: FrameSource
    cancelled: bool = False
    in_flight: bool = False
    match: Optional[StableMatch] = None


class ScannerEngine:
    """On-device recognition engine for cataloged objects.

    Attributes:
        extractor: Feature model producing embeddings
        camera: Camera resource manager
        tenant_id: Tenant whose dataset and catalog are used
        classifier: k-NN classifier
        policy: Acceptance/hysteresis policy
        storage: Optional persistent storage for the dataset
        catalog: Optional source of entity metadata
        resolver: Label -> metadata cache
        frame_interval: Seconds yielded to the event loop between cycles
        cycles_completed: Scan cycles finished so far
        inferences: Classifier invocations so far (never above cycles_completed)
    """

    def __init__(
        self,
        extractor: FeatureExtractor,
        camera: CameraManager,
        *,
        tenant_id: str,
        classifier: Optional[KNNClassifier] = None,
        policy: Optional[HysteresisPolicy] = None,
        dataset: Optional[ReferenceDataset] = None,
        storage: Optional[DatasetStorage] = None,
        catalog: Optional[EntityCatalog] = None,
        resolver: Optional[MatchResolver] = None,
        frame_interval: float = 0.0,
    ):
        self.extractor = extractor
        self.camera = camera
        self.tenant_id = tenant_id
        self.classifier = classifier or KNNClassifier()
        self.policy = policy or HysteresisPolicy()
        self.storage = storage
        self.catalog = catalog
        self.resolver = resolver or MatchResolver()
        self.frame_interval = frame_interval

        self._dataset = dataset if dataset is not None else ReferenceDataset()
        self._state = ScannerState.IDLE
        self._session: Optional[ScanSession] = None
        self._task: Optional[asyncio.Task] = None
        self._load_cancelled = False
        self._match_callbacks: List[MatchCallback] = []
        self._no_match_callbacks: List[NoMatchCallback] = []

        self.cycles_completed = 0
        self.inferences = 0

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def dataset(self) -> ReferenceDataset:
        return self._dataset

    @property
    def current_match(self) -> Optional[StableMatch]:
        return self._session.match if self._session is not None else None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_match(self, callback: MatchCallback) -> Callable[[], None]:
        """Subscribe to SCANNING -> MATCHED transitions.

        Returns:
            A function removing the subscription.
        """
        self._match_callbacks.append(callback)
        return lambda: self._match_callbacks.remove(callback)

    def on_no_match(self, callback: NoMatchCallback) -> Callable[[], None]:
        """Subscribe to MATCHED -> SCANNING transitions (and to a live match
        being cleared by stop()).

        Returns:
            A function removing the subscription.
        """
        self._no_match_callbacks.append(callback)
        return lambda: self._no_match_callbacks.remove(callback)

    def _emit_match(self, match: StableMatch) -> None:
        for callback in list(self._match_callbacks):
            try:
                callback(match)
            except Exception:
                logger.exception("on_match callback failed")

    def _emit_no_match(self) -> None:
        for callback in list(self._no_match_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("on_no_match callback failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> ScannerState:
        """Load the model, the saved dataset and the catalog concurrently.

        Only the model is essential. A missing or corrupted dataset degrades
        to an empty one and a failed catalog fetch degrades every resolution
        to the unknown entity; neither blocks READY. Loading runs once per
        engine: later calls return the current state.

        Returns:
            READY, or STOPPED if stop() was called while loading.

        Raises:
            ModelLoadError: If the model cannot be loaded (state FAILED).
        """
        if self._state != ScannerState.IDLE:
            return self._state

        self._state = ScannerState.MODEL_LOADING
        self._load_cancelled = False
        logger.info(f"Loading scanner for tenant '{self.tenant_id}'...")

        model_result, blob_result, catalog_result = await asyncio.gather(
            asyncio.to_thread(self.extractor.load),
            asyncio.to_thread(self._read_saved_dataset),
            asyncio.to_thread(self.resolver.refresh, self.catalog, self.tenant_id),
            return_exceptions=True,
        )

        if isinstance(model_result, BaseException):
            self._state = ScannerState.FAILED
            logger.error(f"Recognition unavailable, model failed to load: {model_result}")
            if isinstance(model_result, ModelLoadError):
                raise model_result
            raise ModelLoadError(str(model_result)) from model_result

        if isinstance(catalog_result, BaseException):
            logger.warning(f"Catalog unavailable: {catalog_result}")

        self._restore_dataset(blob_result)

        if self._load_cancelled:
            self._state = ScannerState.STOPPED
            logger.info("Loading finished after stop(); scanner stays stopped")
        else:
            self._state = ScannerState.READY
            logger.info(
                f"Scanner ready: {self._dataset.num_classes()} label(s), "
                f"{self._dataset.num_examples()} example(s), {len(self.resolver)} entities"
            )

        return self._state

    def _read_saved_dataset(self) -> Optional[bytes]:
        if self.storage is None:
            return None
        return self.storage.load(self.tenant_id)

    def _restore_dataset(self, blob_result: object) -> None:
        dimension = self.extractor.dimension or None

        if isinstance(blob_result, BaseException):
            logger.warning(f"Could not read saved dataset, starting empty: {blob_result}")
            self._dataset = ReferenceDataset(dimension=dimension)
        elif blob_result is not None:
            self._dataset = ReferenceDataset.deserialize(blob_result, expected_dimension=dimension)
        elif (
            dimension is not None
            and self._dataset.dimension is not None
            and self._dataset.dimension != dimension
        ):
            logger.error(
                f"Dataset dimension {self._dataset.dimension} does not match model "
                f"dimension {dimension}; starting empty"
            )
            self._dataset = ReferenceDataset(dimension=dimension)

        weak = self._dataset.under_represented(self.classifier.k)
        if weak:
            logger.warning(
                f"{len(weak)} label(s) have fewer than k={self.classifier.k} examples: {weak}"
            )

    async def begin(self) -> ScannerState:
        """Acquire the camera and start scanning.

        Returns:
            SCANNING, or the current state when already scanning.

        Raises:
            NotReady: If the model is not loaded (or failed to load).
            PermissionDenied: If camera access is refused. The engine keeps
                its state and holds no camera handle, so begin() can be retried.
        """
        if self._state in (ScannerState.SCANNING, ScannerState.MATCHED):
            return self._state

        if self._state not in (ScannerState.READY, ScannerState.STOPPED):
            raise NotReady(f"Cannot begin scanning in state '{self._state.value}'")

        if not self.extractor.is_ready:
            raise NotReady("Feature model is not loaded")

        previous = self._task
        if previous is not None and not previous.done():
            # A stopped session may still have a cycle in its worker thread
            logger.debug("Waiting for the previous scan cycle to finish")
            await previous
            if self._state in (ScannerState.SCANNING, ScannerState.MATCHED):
                return self._state

        source = self.camera.start()

        session = ScanSession(source=source)
        self._session = session
        self.policy.reset()
        self._state = ScannerState.SCANNING

        self._task = asyncio.create_task(self._run(session))
        logger.info("Scanning started")
        return self._state

    def stop(self) -> ScannerState:
        """Stop scanning and release the camera.

        Idempotent and safe to call from match callbacks. A cycle already in
        flight finishes but its result is discarded; the camera is released
        as soon as that cycle returns. During MODEL_LOADING it keeps the
        engine from becoming READY once loading completes.
        """
        if self._state == ScannerState.MODEL_LOADING:
            self._load_cancelled = True
            logger.info("Stop requested while loading")
            return self._state

        session = self._session
        if session is None:
            # Nothing live; make sure no handle survives
            self.camera.stop()
            return self._state

        session.cancelled = True
        self._session = None
        was_matched = session.match is not None
        session.match = None

        try:
            if not session.in_flight:
                self.camera.stop()
        finally:
            self.policy.reset()
            self._state = ScannerState.STOPPED
            logger.info(
                f"Scanning stopped after {self.cycles_completed} cycle(s), "
                f"{self.inferences} inference(s)"
            )

        if was_matched:
            self._emit_no_match()

        return self._state

    async def join(self) -> None:
        """Wait for the scan loop task to finish."""
        if self._task is not None:
            await self._task

    async def __aenter__(self) -> ScannerEngine:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
        await self.join()

    # ------------------------------------------------------------------
    # Scan loop
    # ------------------------------------------------------------------

    async def _run(self, session: ScanSession) -> None:
        try:
            while not session.cancelled:
                await self._cycle(session)

                if session.cancelled:
                    break

                if not session.source.is_opened:
                    logger.info("Frame source closed, ending scan session")
                    break

                await asyncio.sleep(self.frame_interval)
        except Exception:
            logger.exception("Scan loop crashed")
        finally:
            # Release on every exit path (source closed, crash, task cancelled)
            if self._session is session:
                self.stop()
            elif self.camera.source is session.source:
                self.camera.stop()

    async def _cycle(self, session: ScanSession) -> None:
        candidate: Optional[MatchCandidate] = None

        session.in_flight = True
        try:
            candidate = await asyncio.to_thread(self._read_and_infer, session.source)
        except Exception as e:
            logger.warning(f"Scan cycle failed, no candidate this cycle: {e}")
        finally:
            session.in_flight = False

        self.cycles_completed += 1

        if session.cancelled:
            logger.debug("Discarding result of a cycle that finished after stop()")
            return

        self._apply(session, candidate)

    def _read_and_infer(self, source: FrameSource) -> Optional[MatchCandidate]:
        """Read the current frame and classify it (runs in a worker thread)."""
        success, frame = source.read()
        if not success or frame is None:
            return None
        return self._infer(frame)

    def _infer(self, frame: np.ndarray) -> MatchCandidate:
        if self._dataset.num_classes() == 0:
            return NO_CANDIDATE

        embedding = self.extractor.extract(frame)
        self.inferences += 1
        return self.classifier.predict(embedding, self._dataset)

    def _apply(self, session: ScanSession, candidate: Optional[MatchCandidate]) -> None:
        decision = self.policy.update(candidate)

        if decision.transition == PolicyTransition.ACCEPTED:
            accepted = decision.candidate
            match = StableMatch(
                label=accepted.label,
                confidence=accepted.confidence,
                entity=self.resolver.resolve(accepted.label),
            )
            session.match = match
            self._state = ScannerState.MATCHED
            logger.info(f"Match: {match}")
            self._emit_match(match)

        elif decision.transition == PolicyTransition.RELEASED:
            session.match = None
            self._state = ScannerState.SCANNING
            logger.info("Match released")
            self._emit_no_match()

    # ------------------------------------------------------------------
    # Dataset operations
    # ------------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._state in _LOCKED_STATES:
            raise DatasetLocked(
                f"Dataset cannot change while '{self._state.value}'; call stop() first"
            )
        if self._task is not None and not self._task.done():
            raise DatasetLocked("A scan cycle is still finishing; await join() first")

    def add_example(self, label: str, embedding: np.ndarray) -> None:
        """Teach the engine one example for a label.

        Raises:
            DatasetLocked: While loading or scanning.
            DimensionMismatch: If the embedding has the wrong dimension.
        """
        self._check_mutable()
        self._dataset.add_example(label, embedding)

    def remove_label(self, label: str) -> None:
        """Forget every example of a label.

        Raises:
            DatasetLocked: While loading or scanning.
        """
        self._check_mutable()
        self._dataset.remove_label(label)

    def clear_dataset(self) -> None:
        """Forget every example of every label, keeping the dimension.

        Raises:
            DatasetLocked: While loading or scanning.
        """
        self._check_mutable()
        self._dataset.clear()
        logger.info(f"Cleared dataset for tenant '{self.tenant_id}'")

    def capture_example(self, label: str, frame: np.ndarray) -> np.ndarray:
        """Extract the embedding of a frame and add it as an example.

        Returns:
            The stored embedding.

        Raises:
            DatasetLocked: While loading or scanning.
            ModelNotReady: If the model is not loaded.
        """
        self._check_mutable()
        embedding = self.extractor.extract(frame)
        self._dataset.add_example(label, embedding)
        return embedding

    def persist(self) -> SerializedDataset:
        """Snapshot the dataset. Callable at any time, including while scanning."""
        return self._dataset.serialize()

    def save(self) -> bool:
        """Write the dataset to storage.

        Returns:
            False if the engine has no storage configured.
        """
        if self.storage is None:
            logger.warning("No dataset storage configured; nothing saved")
            return False

        self.storage.save(self.tenant_id, self.persist().to_bytes())
        return True

    def __repr__(self) -> str:
        return (
            f"ScannerEngine(tenant={self.tenant_id!r}, state={self._state.value}, "
            f"dataset={self._dataset})"
        )
