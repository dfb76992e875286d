"""Embedding generation service (provider-agnostic)."""

from __future__ import annotations

from typing import List, Optional

import openai
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from rag_pipeline.config import EmbeddingProvider, EmbeddingSettings, get_settings
from rag_pipeline.utils.errors import (
    EmbeddingError,
    EmbeddingServiceError,
    EmptyInputError,
    MalformedResponseError,
)
from rag_pipeline.utils.logging import get_logger

logger = get_logger("embedding_service")


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, EmbeddingServiceError) and error.is_transient


class EmbeddingService:
    """
    Turn one text into one embedding vector.

    Providers:
    - openai: OpenAI direct API
    - azure: Azure OpenAI (requires a deployment)

    One outbound call per text; rate limits, 5xx answers and connection
    failures are retried with exponential backoff up to
    ``embedding_max_retries`` attempts.
    """

    def __init__(
        self,
        settings: Optional[EmbeddingSettings] = None,
        client=None,
        max_retries: Optional[int] = None,
    ) -> None:
        self._settings = settings or get_settings().embedding
        self._provider = self._settings.embedding_provider
        self._model_name = self._settings.resolved_model_name
        self._max_retries = max_retries or self._settings.embedding_max_retries
        self._client = client  # lazy unless injected

    @property
    def model_name(self) -> str:
        return self._model_name

    def _get_client(self):
        """Create the appropriate OpenAI client for the selected provider."""
        if self._client is not None:
            return self._client

        cfg = self._settings
        if self._provider == EmbeddingProvider.OPENAI:
            if not cfg.openai_api_key:
                raise EmbeddingError(
                    "OPENAI_API_KEY is required when EMBEDDING_PROVIDER=openai",
                    model=self._model_name,
                )
            self._client = openai.AsyncOpenAI(
                api_key=cfg.openai_api_key,
                base_url=cfg.openai_base_url,
                timeout=cfg.embedding_timeout,
                max_retries=0,
            )
            return self._client

        if self._provider == EmbeddingProvider.AZURE:
            if not cfg.is_configured:
                raise EmbeddingError(
                    "Azure embeddings require AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_API_KEY, and EMBEDDING_DEPLOYMENT_NAME",
                    model=self._model_name,
                )
            self._client = openai.AsyncAzureOpenAI(
                api_key=cfg.azure_openai_api_key,
                azure_endpoint=cfg.azure_openai_endpoint,
                api_version=cfg.azure_openai_api_version,
                timeout=cfg.embedding_timeout,
                max_retries=0,
            )
            return self._client

        raise EmbeddingError(f"Unsupported embedding provider: {self._provider}", model=self._model_name)

    async def _embed_once(self, text: str) -> List[float]:
        """Issue one embeddings request and validate the answer."""
        client = self._get_client()
        try:
            resp = await client.embeddings.create(model=self._model_name, input=text)
        except openai.APIStatusError as e:
            raise EmbeddingServiceError(
                f"Embedding service returned HTTP {e.status_code}",
                upstream_status=e.status_code,
                upstream_message=e.message,
                model=self._model_name,
            ) from e
        except openai.APIConnectionError as e:
            raise EmbeddingServiceError(
                f"Embedding service unreachable: {e}",
                upstream_message=str(e),
                model=self._model_name,
            ) from e

        data = getattr(resp, "data", None)
        if not data:
            raise MalformedResponseError("Embedding response contains no data", model=self._model_name)
        vector = getattr(data[0], "embedding", None)
        if not vector:
            raise MalformedResponseError("Embedding response lacks a vector", model=self._model_name)

        expected = self._settings.embedding_dimension
        if expected is not None and len(vector) != expected:
            raise MalformedResponseError(
                "Embedding dimension mismatch",
                model=self._model_name,
                details={"expected_dimension": expected, "actual_dimension": len(vector)},
            )
        return list(vector)

    async def embed(self, text: str) -> List[float]:
        """
        Generate the embedding of one text.

        Args:
            text: Text to embed; newlines are sent as spaces

        Returns:
            Embedding vector

        Raises:
            EmptyInputError: If the text is empty after trimming
            EmbeddingServiceError: On an upstream error once retries are exhausted
            MalformedResponseError: If the response has no usable vector
        """
        cleaned = (text or "").replace("\n", " ").strip()
        if not cleaned:
            raise EmptyInputError()

        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception(_is_transient),
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying embedding request: attempt={attempt.retry_state.attempt_number}, "
                        f"model={self._model_name}"
                    )
                return await self._embed_once(cleaned)
        # unreachable due to reraise=True, but keeps type checkers happy
        raise EmbeddingError("Embedding retries exhausted", model=self._model_name)

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None
