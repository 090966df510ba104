"""Embeddings served by an OpenAI-compatible HTTP endpoint."""

from __future__ import annotations

from typing import List

from vaultrag.errors import ProviderError
from vaultrag.llm.client import OpenAICompatibleClient, ProviderConfig


class OpenAICompatibleEmbeddingModel:
    def __init__(
        self,
        model: str,
        dimension: int,
        config: ProviderConfig | None = None,
        *,
        client: OpenAICompatibleClient | None = None,
    ) -> None:
        self.model = model
        self.dimension = dimension
        self.client = client or OpenAICompatibleClient(config or ProviderConfig.from_env())
        self.id = f"{self.client.config.provider_id}/{model}"

    def embed(self, text: str) -> List[float]:
        data = self.client.post("embeddings", {"model": self.model, "input": text})
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"Unexpected embedding response from {self.id}", raw_error=exc) from exc
        if len(vector) != self.dimension:
            raise ProviderError(
                f"{self.id} returned {len(vector)} dimensions, expected {self.dimension}"
            )
        return [float(value) for value in vector]
