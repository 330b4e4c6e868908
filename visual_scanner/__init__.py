"""On-device visual recognition of cataloged objects.

The engine turns camera frames into embeddings with a MobileNet model,
classifies them against a per-tenant reference dataset with k-NN, and
reports stable matches enriched with catalog metadata.

Use the factory module to create a fully wired engine.
"""

from visual_scanner.config import Config, get_config
from visual_scanner.dataset import ReferenceDataset, SerializedDataset
from visual_scanner.engine import ScannerEngine, ScannerState
from visual_scanner.exceptions import (
    CorruptionError,
    DatasetLocked,
    DimensionMismatch,
    ModelLoadError,
    ModelNotReady,
    NotReady,
    PermissionDenied,
    ScannerError,
)
from visual_scanner.factory import create_engine
from visual_scanner.interfaces import EntityMetadata, MatchCandidate, StableMatch
from visual_scanner.logging_config import get_logger, setup_logging

__all__ = [
    "Config",
    "get_config",
    "ReferenceDataset",
    "SerializedDataset",
    "ScannerEngine",
    "ScannerState",
    "CorruptionError",
    "DatasetLocked",
    "DimensionMismatch",
    "ModelLoadError",
    "ModelNotReady",
    "NotReady",
    "PermissionDenied",
    "ScannerError",
    "create_engine",
    "EntityMetadata",
    "MatchCandidate",
    "StableMatch",
    "get_logger",
    "setup_logging",
]
