"""Engine factory.

Wires the real components (ONNX feature model, OpenCV camera, FAISS
classifier, file storage, HTTP catalog) from a Config.

Usage:
    # Live webcam
    engine = create_engine(get_config())

    # Replay a recorded visit
    engine = create_engine(get_config(), video_path="data/visit.mp4")
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from visual_scanner.camera import CameraManager
from visual_scanner.catalog import HttpEntityCatalog
from visual_scanner.classifier import KNNClassifier
from visual_scanner.config import Config
from visual_scanner.embedder import MobileNetEmbedder
from visual_scanner.engine import ScannerEngine
from visual_scanner.logging_config import get_logger
from visual_scanner.policy import HysteresisPolicy
from visual_scanner.storage import FileDatasetStorage
from visual_scanner.video_io import VideoFileSource, WebcamSource

logger = get_logger(__name__)


def create_engine(
    config: Config | None = None,
    *,
    video_path: Optional[str | Path] = None,
    tenant_id: Optional[str] = None,
) -> ScannerEngine:
    """Create a ScannerEngine from configuration.

    Args:
        config: Configuration object. If None, loads from .env
        video_path: Read frames from this file instead of the webcam
        tenant_id: Override the configured tenant

    Returns:
        An IDLE engine; call load() next.
    """
    if config is None:
        from visual_scanner.config import get_config
        config = get_config()

    if video_path is not None:
        path = Path(video_path)
        camera = CameraManager(lambda: VideoFileSource(path))
    else:
        camera = CameraManager(lambda: WebcamSource(camera_id=config.camera_id))

    catalog = None
    if config.api_base_url:
        catalog = HttpEntityCatalog(
            config.api_base_url,
            limit=config.metadata_limit,
            timeout=config.request_timeout,
        )

    engine = ScannerEngine(
        MobileNetEmbedder(config.model_path, ctx_id=config.ctx_id, input_size=config.input_size),
        camera,
        tenant_id=tenant_id or config.tenant_id,
        classifier=KNNClassifier(k=config.k_neighbors),
        policy=HysteresisPolicy(
            accept_threshold=config.accept_thresh,
            release_threshold=config.release_thresh,
            window=config.hysteresis_window,
        ),
        storage=FileDatasetStorage(config.models_dir),
        catalog=catalog,
        frame_interval=config.frame_interval,
    )

    logger.info(f"Created {engine}")
    return engine
