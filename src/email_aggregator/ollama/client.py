"""Ollama client implementation.

This module provides the categorization oracle backed by a local Ollama
instance. It only transports prompts and responses; interpreting the response
is the categorizer's job.
"""

from typing import Any, Optional

import httpx
import structlog

from email_aggregator.categorization.prompt import (
    ClassificationFeatures,
    build_classification_prompt,
)
from email_aggregator.config import Settings
from email_aggregator.exceptions import OllamaConnectionError, OllamaInferenceError

logger = structlog.get_logger()


class OllamaClient:
    """Ollama LLM client for AI inference.

    This client handles communication with the Ollama API
    for language model inference tasks.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize Ollama client.

        Args:
            settings: Application settings. If None, uses default settings.
            http_client: HTTP client to use. If None, one is created and owned
                by this instance (close it with ``aclose``).
        """
        from email_aggregator.config import get_settings

        self.settings = settings or get_settings()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.ollama_host.rstrip("/"),
            timeout=self.settings.ollama_timeout,
        )
        logger.info(
            "ollama_client_initialized",
            host=self.settings.ollama_host,
            model=self.settings.ollama_model,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        response_format: Optional[str] = "json",
    ) -> dict[str, Any]:
        """Generate text using Ollama.

        Args:
            prompt: The prompt to send to the model.
            model: Model name to use. If None, uses default from settings.
            response_format: Ollama ``format`` option; ``"json"`` asks the
                model for a JSON object. None leaves the output unconstrained.

        Returns:
            Response dictionary containing generated text and metadata.

        Raises:
            OllamaConnectionError: If unable to connect to Ollama.
            OllamaInferenceError: If inference fails.
        """
        model = model or self.settings.ollama_model
        logger.debug("generating_text", model=model, prompt_length=len(prompt))

        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0},
        }
        if response_format:
            payload["format"] = response_format

        try:
            response = await self._client.post(
                "/api/generate", json=payload, timeout=self.settings.ollama_timeout
            )
        except httpx.TimeoutException as exc:
            raise OllamaConnectionError(f"Ollama request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise OllamaConnectionError(f"Unable to reach Ollama: {exc}") from exc

        if response.status_code >= 400:
            raise OllamaInferenceError(
                f"Ollama returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise OllamaInferenceError("Ollama returned a non-JSON body") from exc

        if not isinstance(data, dict) or "response" not in data:
            raise OllamaInferenceError("Ollama response is missing the 'response' field")
        return data

    async def classify_one(self, features: ClassificationFeatures) -> Any:
        """Ask the model to categorize one message.

        Returns:
            The model's raw ``response`` text.
        """
        data = await self.generate(build_classification_prompt(features))
        return data["response"]
