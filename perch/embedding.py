"""
Batch embedding with minimum-content screening.

Texts too short to carry meaning never reach the model; their positions
come back as None. Everything else is embedded in a single model call and
placed back at its original index.
"""

import asyncio
import logging
import math
import re
from typing import Optional, Sequence

from .errors import EmbeddingProviderFailure, PreconditionViolation
from .providers.base import EmbeddingModel
from .types import Vector

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONTENT_CHARS = 3

_WHITESPACE_RE = re.compile(r"\s+")


def has_enough_content(text: Optional[str], min_chars: int = DEFAULT_MIN_CONTENT_CHARS) -> bool:
    """True if ``text`` has at least ``min_chars`` non-whitespace characters."""
    if not text:
        return False
    return len(_WHITESPACE_RE.sub("", text)) >= min_chars


def validate_vector(vector: object, dimension: Optional[int] = None) -> Vector:
    """
    Check that ``vector`` is a non-empty list of finite numbers.

    Returns the vector as a list of floats.

    Raises:
        PreconditionViolation: If the vector is malformed
    """
    if isinstance(vector, (str, bytes)) or not isinstance(vector, Sequence):
        raise PreconditionViolation(f"Vector must be a sequence of numbers, got {type(vector).__name__}")
    if len(vector) == 0:
        raise PreconditionViolation("Vector must not be empty")
    if dimension is not None and len(vector) != dimension:
        raise PreconditionViolation(f"Vector has dimension {len(vector)}, expected {dimension}")
    result = []
    for x in vector:
        if isinstance(x, bool) or not isinstance(x, (int, float)):
            raise PreconditionViolation(f"Vector contains non-numeric value {x!r}")
        x = float(x)
        if not math.isfinite(x):
            raise PreconditionViolation("Vector contains non-finite value")
        result.append(x)
    return result


class BatchEmbedder:
    """
    Embeds batches of texts through a shared model handle.

    The model runs in a worker thread so the event loop stays responsive;
    there is never more than one inference call per batch.
    """

    def __init__(self, model: EmbeddingModel, *, min_chars: int = DEFAULT_MIN_CONTENT_CHARS):
        self._model = model
        self.min_chars = min_chars
        self.model_calls = 0

    @property
    def model(self) -> EmbeddingModel:
        return self._model

    def is_enough_content(self, text: Optional[str]) -> bool:
        return has_enough_content(text, self.min_chars)

    async def embed_batch(self, texts: list[Optional[str]]) -> list[Optional[Vector]]:
        """
        Embed ``texts``, returning one vector or None per input position.

        Raises:
            PreconditionViolation: If ``texts`` is empty
            EmbeddingProviderFailure: If the model call fails or returns
                the wrong number of vectors
        """
        if not isinstance(texts, (list, tuple)) or len(texts) == 0:
            raise PreconditionViolation("texts must be a non-empty list")

        index_map: list[int] = []
        valid_texts: list[str] = []
        for i, text in enumerate(texts):
            if self.is_enough_content(text):
                index_map.append(i)
                valid_texts.append(text)

        result: list[Optional[Vector]] = [None] * len(texts)
        if not valid_texts:
            logger.debug("No text in batch of %d has enough content, skipping model call", len(texts))
            return result

        self.model_calls += 1
        try:
            vectors = await asyncio.to_thread(self._model.encode, valid_texts)
        except Exception as e:
            raise EmbeddingProviderFailure(f"Failed to generate embeddings: {e}") from e

        if len(vectors) != len(valid_texts):
            raise EmbeddingProviderFailure(
                f"Model returned {len(vectors)} vectors for {len(valid_texts)} texts"
            )

        for original_index, vector in zip(index_map, vectors):
            try:
                result[original_index] = validate_vector(vector)
            except PreconditionViolation as e:
                raise EmbeddingProviderFailure(f"Model returned a malformed vector: {e}") from e

        logger.debug("Embedded %d of %d texts", len(valid_texts), len(texts))
        return result

    async def embed_one(self, text: Optional[str]) -> Optional[Vector]:
        """Embed a single text; None if it has too little content."""
        return (await self.embed_batch([text]))[0]
