"""Local persistence of serialized datasets, one file per tenant."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)


class FileDatasetStorage:
    """Store dataset blobs as `scanner_model_<tenant>.json` files.

    Writes go to a temporary file first and are moved into place, so a crash
    mid-write leaves the previous dataset intact.

    Example:
        >>> storage = FileDatasetStorage("models")
        >>> storage.save("museum-1", dataset.serialize().to_bytes())
        >>> blob = storage.load("museum-1")
    """

    def __init__(self, root_dir: str | Path):
        self.root_dir = Path(root_dir)

    def path_for(self, tenant_id: str) -> Path:
        """File path of a tenant's dataset.

        The tenant id is percent-encoded, so distinct ids never share a file
        and no id can leave root_dir.
        """
        safe_id = quote(tenant_id, safe="-_")
        return self.root_dir / f"scanner_model_{safe_id}.json"

    def load(self, tenant_id: str) -> Optional[bytes]:
        path = self.path_for(tenant_id)
        if not path.exists():
            logger.info(f"No saved dataset for tenant '{tenant_id}'")
            return None

        blob = path.read_bytes()
        logger.info(f"Read saved dataset from {path} ({len(blob)} bytes)")
        return blob

    def save(self, tenant_id: str, blob: bytes) -> None:
        path = self.path_for(tenant_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_bytes(blob)
        os.replace(tmp_path, path)

        logger.info(f"Saved dataset to {path} ({len(blob)} bytes)")

    def __repr__(self) -> str:
        return f"FileDatasetStorage(root_dir={self.root_dir})"
