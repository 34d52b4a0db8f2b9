"""Cross-store consistency checks between the primary store and the vector index."""

import logging
from typing import Any, Dict, List, Optional

from services.deletion_service import vector_filter

logger = logging.getLogger(__name__)

CONSISTENT = "consistent"
INCONSISTENT = "inconsistent"
UNKNOWN = "unknown"


class ConsistencyService:
    def __init__(self, store, vector_store):
        self.store = store
        self.vector_store = vector_store

    async def _vectors_exist(self, content_id: str) -> Optional[bool]:
        try:
            return await self.vector_store.has_vectors(content_id)
        except Exception as e:
            logger.error(f"Error checking vector store for content {content_id}: {e}")
            return None

    async def check_content(self, content_id: str) -> Dict[str, Any]:
        try:
            content = await self.store.get_content(content_id)
        except Exception as e:
            logger.error(f"Error checking consistency for content {content_id}: {e}")
            return {
                "content_id": content_id,
                "status": UNKNOWN,
                "details": {"exists_in_primary": False, "exists_in_vectors": None},
                "recommendation": f"Error during check: {e}",
            }

        in_primary = content is not None
        in_vectors = await self._vectors_exist(content_id)
        is_deleted = bool(content and content.is_deleted)

        recommendation = None
        if in_vectors is None:
            status = UNKNOWN
            recommendation = "Cannot check vector store - client unavailable or query failed"
        elif in_primary and in_vectors:
            status = CONSISTENT
            if is_deleted:
                recommendation = "Content soft-deleted, vectors retained until permanent deletion (expected)"
        elif not in_primary and not in_vectors:
            status = CONSISTENT
            recommendation = "Content properly deleted from both stores"
        elif not in_primary:
            status = INCONSISTENT
            recommendation = "CRITICAL: content deleted from primary store but vectors remain. Run cleanup."
        else:
            status = INCONSISTENT
            recommendation = "WARNING: content exists but has no vectors. May need re-processing."

        return {
            "content_id": content_id,
            "status": status,
            "details": {
                "exists_in_primary": in_primary,
                "exists_in_vectors": in_vectors,
                "is_deleted": is_deleted,
                "deleted_at": content.deleted_at.isoformat() if content and content.deleted_at else None,
            },
            "recommendation": recommendation,
        }

    async def scan_for_inconsistencies(self, limit: int = 100, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        content_ids = await self.store.list_content_ids(user_id, limit)
        logger.info(f"Scanning {len(content_ids)} contents for consistency...")

        reports = []
        for content_id in content_ids:
            report = await self.check_content(content_id)
            if report["status"] == INCONSISTENT:
                logger.warning(f"Inconsistency found for content {content_id}: {report['recommendation']}")
                reports.append(report)

        logger.info(
            f"Consistency scan complete. Found {len(reports)} inconsistencies out of {len(content_ids)} contents."
        )
        return reports

    async def cleanup_orphaned_vectors(self, content_ids: List[str]) -> Dict[str, Any]:
        """Delete vectors for ids that no longer exist in the primary store."""
        existing = set(await self.store.existing_content_ids(content_ids))
        cleaned = 0
        errors = []

        for content_id in content_ids:
            if content_id in existing:
                logger.warning(f"Content {content_id} exists in primary store - skipping cleanup")
                continue
            try:
                await self.vector_store.delete_by_metadata(vector_filter(content_id))
                cleaned += 1
                logger.info(f"Cleaned up orphaned vectors for content {content_id}")
            except Exception as e:
                message = f"Failed to cleanup vectors for {content_id}: {e}"
                errors.append(message)
                logger.error(message)

        return {"success": not errors, "cleaned_count": cleaned, "errors": errors}
