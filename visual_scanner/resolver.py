"""Match resolver: labels to human-facing entity metadata."""

from __future__ import annotations

from typing import Dict, Optional

import requests

from visual_scanner.interfaces import UNKNOWN_ENTITY, EntityCatalog, EntityMetadata
from visual_scanner.logging_config import get_logger

logger = get_logger(__name__)


class MatchResolver:
    """Session-scoped cache of entity metadata.

    Filled by one bulk fetch at startup. A label without metadata (for
    example a stale dataset trained on a deleted work) resolves to
    UNKNOWN_ENTITY; the caller decides whether that counts as a match.

    Example:
        >>> resolver = MatchResolver()
        >>> resolver.refresh(catalog, "museum-1")
        >>> resolver.resolve("art-12").display_name
        'Abaporu'
    """

    def __init__(self, entities: Optional[Dict[str, EntityMetadata]] = None):
        self._cache: Dict[str, EntityMetadata] = dict(entities or {})

    def refresh(self, catalog: Optional[EntityCatalog], tenant_id: str) -> int:
        """Replace the cache with the catalog's entities.

        Failures are logged and leave the cache empty, so every label
        resolves to UNKNOWN_ENTITY.

        Returns:
            Number of cached entities.
        """
        self._cache = {}

        if catalog is None:
            logger.info("No catalog configured; matches resolve to unknown entities")
            return 0

        try:
            entities = catalog.list_entities(tenant_id)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Catalog fetch failed for tenant '{tenant_id}': {e}")
            return 0

        self._cache = {entity.id: entity for entity in entities}
        logger.info(f"Resolver cache holds {len(self._cache)} entities")
        return len(self._cache)

    def resolve(self, label: str) -> EntityMetadata:
        """Metadata for a label, or UNKNOWN_ENTITY."""
        entity = self._cache.get(label)
        if entity is None:
            logger.debug(f"No metadata for label '{label}'")
            return UNKNOWN_ENTITY
        return entity

    def __len__(self) -> int:
        return len(self._cache)

    def __repr__(self) -> str:
        return f"MatchResolver(entities={len(self._cache)})"
