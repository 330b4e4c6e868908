"""Configuration management for the visual scanner.

This module loads configuration from environment variables (.env file) and
provides a centralized Config class for accessing scanner settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class Config:
    """Scanner configuration loaded from environment variables.

    Attributes:
        tenant_id: Tenant (museum) whose catalog and dataset are used
        model_path: Path to the ONNX feature extractor
        ctx_id: Device context ID (-1 for CPU, 0+ for GPU)
        input_size: Square input resolution expected by the model
        accept_thresh: Confidence needed to accept a match (0.0-1.0)
        release_thresh: Confidence below which a live match is released
        hysteresis_window: Consecutive cycles needed to change match state
        k_neighbors: Number of neighbors voting in the classifier
        camera_id: Camera device ID for video capture
        max_fps: Cap on scan cycles per second (0 = no limit)
        api_base_url: Base URL of the catalog API ("" disables the fetch)
        metadata_limit: Maximum number of works fetched for the resolver
        request_timeout: Timeout in seconds for catalog requests
        num_training_examples: Examples captured per label when teaching
        min_sharpness: Minimum Laplacian variance for a teaching frame
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    tenant_id: str
    model_path: Path
    ctx_id: int
    input_size: int
    accept_thresh: float
    release_thresh: float
    hysteresis_window: int
    k_neighbors: int
    camera_id: int
    max_fps: int
    api_base_url: str
    metadata_limit: int
    request_timeout: float
    num_training_examples: int
    min_sharpness: float
    log_level: str

    # Paths
    data_dir: Path
    models_dir: Path

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If environment variables are invalid.
        """
        # Get project root (parent of visual_scanner/)
        project_root = Path(__file__).parent.parent

        tenant_id = os.getenv("TENANT_ID", "default").strip()
        if not tenant_id:
            raise ValueError("TENANT_ID must not be empty")

        data_dir = project_root / "data"
        models_dir = project_root / "models"

        model_path = Path(os.getenv("MODEL_PATH", str(models_dir / "mobilenet_v1.onnx")))

        # Device configuration
        ctx_id = int(os.getenv("CTX_ID", "-1"))

        input_size = int(os.getenv("INPUT_SIZE", "224"))
        if input_size < 32:
            raise ValueError(f"INPUT_SIZE must be >= 32, got {input_size}")

        # Acceptance policy
        accept_thresh = float(os.getenv("ACCEPT_THRESH", "0.8"))
        if not 0.0 <= accept_thresh <= 1.0:
            raise ValueError(f"ACCEPT_THRESH must be between 0.0 and 1.0, got {accept_thresh}")

        release_thresh = float(os.getenv("RELEASE_THRESH", str(accept_thresh)))
        if not 0.0 <= release_thresh <= accept_thresh:
            raise ValueError(
                f"RELEASE_THRESH must be between 0.0 and ACCEPT_THRESH ({accept_thresh}), "
                f"got {release_thresh}"
            )

        hysteresis_window = int(os.getenv("HYSTERESIS_WINDOW", "2"))
        if hysteresis_window < 1:
            raise ValueError(f"HYSTERESIS_WINDOW must be >= 1, got {hysteresis_window}")

        k_neighbors = int(os.getenv("K_NEIGHBORS", "3"))
        if k_neighbors < 1:
            raise ValueError(f"K_NEIGHBORS must be >= 1, got {k_neighbors}")

        # Camera configuration
        camera_id = int(os.getenv("CAMERA_ID", "0"))
        if camera_id < 0:
            raise ValueError(f"CAMERA_ID must be >= 0, got {camera_id}")

        max_fps = int(os.getenv("MAX_FPS", "30"))
        if max_fps < 0:
            raise ValueError(f"MAX_FPS must be >= 0, got {max_fps}")

        # Catalog API
        api_base_url = os.getenv("API_BASE_URL", "").rstrip("/")

        metadata_limit = int(os.getenv("METADATA_LIMIT", "100"))
        if metadata_limit < 1:
            raise ValueError(f"METADATA_LIMIT must be >= 1, got {metadata_limit}")

        request_timeout = float(os.getenv("REQUEST_TIMEOUT", "5.0"))
        if request_timeout <= 0:
            raise ValueError(f"REQUEST_TIMEOUT must be > 0, got {request_timeout}")

        # Teaching configuration
        num_training_examples = int(os.getenv("NUM_TRAINING_EXAMPLES", "10"))
        if num_training_examples < 1:
            raise ValueError(
                f"NUM_TRAINING_EXAMPLES must be >= 1, got {num_training_examples}"
            )

        min_sharpness = float(os.getenv("MIN_SHARPNESS", "100"))
        if min_sharpness < 0:
            raise ValueError(f"MIN_SHARPNESS must be >= 0, got {min_sharpness}")

        # Logging configuration
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got {log_level}")

        # Ensure directories exist
        data_dir.mkdir(parents=True, exist_ok=True)
        models_dir.mkdir(parents=True, exist_ok=True)

        return cls(
            tenant_id=tenant_id,
            model_path=model_path,
            ctx_id=ctx_id,
            input_size=input_size,
            accept_thresh=accept_thresh,
            release_thresh=release_thresh,
            hysteresis_window=hysteresis_window,
            k_neighbors=k_neighbors,
            camera_id=camera_id,
            max_fps=max_fps,
            api_base_url=api_base_url,
            metadata_limit=metadata_limit,
            request_timeout=request_timeout,
            num_training_examples=num_training_examples,
            min_sharpness=min_sharpness,
            log_level=log_level,
            data_dir=data_dir,
            models_dir=models_dir,
        )

    @property
    def frame_interval(self) -> float:
        """Seconds the scan loop yields between cycles."""
        return 1.0 / self.max_fps if self.max_fps > 0 else 0.0

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config(\n"
            f"  Tenant: {self.tenant_id},\n"
            f"  Device: {'GPU' if self.ctx_id >= 0 else 'CPU'}:{self.ctx_id},\n"
            f"  Model: {self.model_path},\n"
            f"  Thresholds: accept={self.accept_thresh}, release={self.release_thresh},\n"
            f"  Hysteresis: {self.hysteresis_window} cycle(s),\n"
            f"  Neighbors: {self.k_neighbors},\n"
            f"  Camera: {self.camera_id} @ max {self.max_fps} FPS,\n"
            f"  Catalog: {self.api_base_url or 'disabled'},\n"
            f"  Log Level: {self.log_level}\n"
            f")"
        )


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config instance loaded from environment.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
