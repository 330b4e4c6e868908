"""HTTP client for the tenant's work catalog.

The scanner fetches the catalog once per session to map classifier labels
to titles. The API answers `GET /works?tenantId=...&limit=...` with either a
bare list or `{"data": [...], "pagination": {...}}`.
"""

from __future__ import annotations

from typing import Any, List, Optional

import requests

from visual_scanner.interfaces import EntityMetadata
from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)


class HttpEntityCatalog:
    """Fetch entity metadata from the catalog API.

    Attributes:
        base_url: API root, e.g. "https://museum.example.org/api"
        limit: Maximum number of works requested
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        limit: int = 100,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.limit = limit
        self.timeout = timeout
        self.session = session or requests.Session()

    def list_entities(self, tenant_id: str) -> List[EntityMetadata]:
        """Return the works of a tenant.

        Raises:
            requests.RequestException: On network or HTTP errors.
            ValueError: If the payload is not a list of works.
        """
        resp = self.session.get(
            f"{self.base_url}/works",
            params={"tenantId": tenant_id, "limit": self.limit},
            timeout=self.timeout,
        )
        resp.raise_for_status()

        payload = resp.json()
        items = payload.get("data", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise ValueError(f"Unexpected catalog payload type: {type(items).__name__}")

        entities = [entity for entity in (_to_entity(item) for item in items) if entity]

        logger.info(f"Fetched {len(entities)} work(s) for tenant '{tenant_id}'")
        return entities

    def __repr__(self) -> str:
        return f"HttpEntityCatalog(base_url={self.base_url}, limit={self.limit})"


def _to_entity(item: Any) -> Optional[EntityMetadata]:
    if not isinstance(item, dict) or item.get("id") in (None, ""):
        return None

    name = item.get("title") or item.get("displayName") or item.get("name") or ""
    return EntityMetadata(id=str(item["id"]), display_name=str(name))
