"""
Embedding models.

The sentence-transformers model is loaded on first use, not at
construction, and can be released to free memory. One handle is shared
by every engine of an Organizer.
"""

import logging
import threading
from typing import Optional

from .base import get_registry

logger = logging.getLogger(__name__)


class SentenceTransformerModel:
    """
    Local embedding via sentence-transformers.

    Lifecycle: ``load()`` (implicit on first ``encode``) and ``release()``.
    Loading is guarded by a lock so a background sync and an event handler
    cannot load the model twice.
    """

    def __init__(self, model: str = "sentence-transformers/all-MiniLM-L6-v2", device: Optional[str] = None):
        self.model_name = model
        self._device = device
        self._model = None
        self._lock = threading.Lock()

    def load(self):
        """Load the model if it is not loaded yet and return it."""
        if self._model is not None:
            return self._model
        with self._lock:
            # Double-check after acquiring lock
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading embedding model: %s", self.model_name)
                self._model = SentenceTransformer(self.model_name, device=self._device)
        return self._model

    @property
    def dimension(self) -> int:
        return self.load().get_sentence_embedding_dimension()

    def encode(self, texts: list[str]) -> list[list[float]]:
        model = self.load()
        vectors = model.encode(texts, show_progress_bar=False, convert_to_numpy=True)
        return [v.tolist() for v in vectors]

    def release(self) -> None:
        """Drop the loaded model. The next ``encode`` loads it again."""
        with self._lock:
            if self._model is not None:
                logger.info("Releasing embedding model: %s", self.model_name)
            self._model = None


_registry = get_registry()
_registry.register_embedding("sentence-transformers", SentenceTransformerModel)
