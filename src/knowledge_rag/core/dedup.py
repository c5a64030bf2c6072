"""
Content deduplication.

Content identity is the SHA-256 of the exact normalized text. A Deduplicator
lives for one ingestion run and combines an in-run set of seen hashes with a
remote existence check against the store.
"""

import hashlib
import logging
from typing import Awaitable, Callable, Set

logger = logging.getLogger(__name__)

ExistsCheck = Callable[[str], Awaitable[bool]]


def compute_content_hash(content: str) -> str:
    """Lowercase hex SHA-256 of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class Deduplicator:
    """
    Decides whether a content hash was already ingested.

    A failed remote check is treated as "not a duplicate" (fail-open): the
    store's unique index on the content hash remains the final guard.
    """

    def __init__(self, exists_check: ExistsCheck):
        self._exists_check = exists_check
        self._seen: Set[str] = set()
        self.remote_checks = 0
        self.check_failures = 0

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    async def is_duplicate(self, content_hash: str) -> bool:
        if content_hash in self._seen:
            return True

        # Reserve before awaiting so concurrent siblings resolve locally
        self._seen.add(content_hash)
        self.remote_checks += 1
        try:
            return await self._exists_check(content_hash)
        except Exception as e:
            self.check_failures += 1
            logger.warning(
                f"Existence check failed for {content_hash[:12]}, assuming new: {e}"
            )
            return False

    def reset(self) -> None:
        self._seen.clear()
        self.remote_checks = 0
        self.check_failures = 0
