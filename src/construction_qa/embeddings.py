"""
Text embedding providers.

Embedders translate provider-specific failures into the exception types in
``exceptions`` so that the embedding index can react to them without
knowing which provider is behind it.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .exceptions import ProviderError, ProviderPayloadTooLarge, ProviderQuotaExhausted, ProviderRateLimited

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"

CONTEXT_LENGTH_MARKER = "maximum context length"
QUOTA_ERROR_CODE = "insufficient_quota"


class TextEmbedder(ABC):
    """Abstract base for text embedders."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed texts, one vector per input, in input order.

        Raises:
            ProviderRateLimited: Provider asked us to slow down
            ProviderPayloadTooLarge: An input exceeded the model context
            ProviderQuotaExhausted: Account quota is used up
            ProviderError: Any other provider failure
        """
        pass

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]


class OpenAIEmbedder(TextEmbedder):
    """
    OpenAI embeddings (``text-embedding-3-small`` by default, 1536 dims).

    Example:
        >>> embedder = OpenAIEmbedder(api_key="sk-...")
        >>> vectors = embedder.embed_batch(["fire rated door", "roof drain"])
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: Optional[str] = None,
        client=None
    ):
        """
        Initialize the embedder.

        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY env var)
            model: Embedding model name
            base_url: Alternative API endpoint
            client: Pre-built ``openai.OpenAI`` client (tests, custom transports)
        """
        self._model = model
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=api_key, base_url=base_url)
        self._client = client

    @property
    def model_name(self) -> str:
        return self._model

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        import openai

        try:
            response = self._client.embeddings.create(model=self._model, input=texts)
        except openai.RateLimitError as e:
            if getattr(e, "code", None) == QUOTA_ERROR_CODE:
                raise ProviderQuotaExhausted(str(e), provider="openai") from e
            raise ProviderRateLimited(str(e), provider="openai") from e
        except openai.BadRequestError as e:
            if CONTEXT_LENGTH_MARKER in str(e):
                raise ProviderPayloadTooLarge(str(e), provider="openai") from e
            raise ProviderError(str(e), provider="openai") from e
        except openai.OpenAIError as e:
            raise ProviderError(str(e), provider="openai") from e

        data = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in data]


class SentenceTransformerEmbedder(TextEmbedder):
    """
    Local embeddings with sentence-transformers.

    Default 'all-MiniLM-L6-v2' produces 384-dim embeddings and needs no
    API key, which makes it handy for offline evaluation.
    """

    def __init__(self, model: str = DEFAULT_LOCAL_MODEL):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "Please install sentence-transformers: pip install construction-qa[local]"
            )
        self._model_name = model
        self._model = SentenceTransformer(model)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._model.get_sentence_embedding_dimension()

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return self._model.encode(texts).tolist()
