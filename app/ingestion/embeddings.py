"""
Embedding generation service using the Ollama API.
Turns chat messages and search queries into nomic-embed-text vectors (768d).
"""
from typing import List, Optional
import requests

from app.config import OLLAMA_BASE_URL, EMBEDDING_MODEL, EMBEDDING_DIMENSIONS
from app.exceptions import EmbeddingError
from app.logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingService:
    """Generates embeddings for message text using a self-hosted Ollama model."""

    def __init__(self, base_url: Optional[str] = None, model: str = EMBEDDING_MODEL, timeout: int = 30):
        """
        Args:
            base_url: Ollama API URL (default: OLLAMA_BASE_URL)
            model: Ollama embedding model name (default: nomic-embed-text)
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url or OLLAMA_BASE_URL
        self.model = model
        self.timeout = timeout
        self.dimensions = EMBEDDING_DIMENSIONS
        logger.info(f"Initialized EmbeddingService with Ollama model: {model} at {self.base_url}")

    def embed_single(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Raises:
            EmbeddingError: Ollama unreachable, non-2xx, or malformed response
        """
        try:
            response = requests.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
                timeout=self.timeout
            )
            response.raise_for_status()
            embedding = response.json().get("embedding")
        except requests.exceptions.HTTPError as e:
            logger.error(f"Embedding HTTP error: {e}")
            logger.error(f"Response body: {response.text[:1000]}")
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Embedding failed: {e}")
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if not embedding:
            raise EmbeddingError("Embedding response did not contain a vector")
        return embedding

    def embed_many(self, texts: List[str]) -> List[Optional[List[float]]]:
        """
        Embed texts sequentially, leaving None for any that failed.

        Failures are logged and skipped so one bad message doesn't lose the batch.
        """
        embeddings = []
        for text in texts:
            try:
                embeddings.append(self.embed_single(text))
            except EmbeddingError as e:
                logger.error(f"Skipping message embedding: {e}")
                embeddings.append(None)

        failed_count = sum(1 for emb in embeddings if emb is None)
        logger.info(f"Generated {len(texts) - failed_count}/{len(texts)} embeddings ({self.dimensions} dimensions)")
        return embeddings
