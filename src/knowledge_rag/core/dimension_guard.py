"""Embedding dimension check run before every store write."""

import logging
from typing import Sequence

from knowledge_rag.errors import DimensionMismatchError

logger = logging.getLogger(__name__)


class DimensionGuard:
    """Rejects vectors whose size differs from the index dimension."""

    def __init__(self, expected_dim: int = 1536):
        if expected_dim <= 0:
            raise ValueError("expected_dim must be positive")
        self.expected_dim = expected_dim

    def check(self, embedding: Sequence[float]) -> None:
        """
        Raise DimensionMismatchError when sizes differ.

        Vectors are never truncated or padded.
        """
        actual = len(embedding)
        if actual != self.expected_dim:
            error = DimensionMismatchError(self.expected_dim, actual)
            logger.error(str(error))
            raise error
