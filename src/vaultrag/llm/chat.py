"""Chat model interface used to generate edits, plus an HTTP implementation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Protocol, Sequence, runtime_checkable

from vaultrag.errors import ProviderError
from vaultrag.llm.client import OpenAICompatibleClient, ProviderConfig


@dataclass(slots=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@runtime_checkable
class ChatModel(Protocol):
    def generate(self, messages: Sequence[ChatMessage]) -> str:
        ...

    def stream(self, messages: Sequence[ChatMessage]) -> Iterator[str]:
        ...


class OpenAICompatibleChatModel:
    def __init__(
        self,
        model: str,
        config: ProviderConfig | None = None,
        *,
        temperature: float = 0.0,
        client: OpenAICompatibleClient | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.client = client or OpenAICompatibleClient(config or ProviderConfig.from_env())

    def _payload(self, messages: Sequence[ChatMessage]) -> dict:
        return {
            "model": self.model,
            "messages": [message.to_dict() for message in messages],
            "temperature": self.temperature,
        }

    def generate(self, messages: Sequence[ChatMessage]) -> str:
        data = self.client.post("chat/completions", self._payload(messages))
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"Unexpected chat response from {self.model}", raw_error=exc) from exc

    def stream(self, messages: Sequence[ChatMessage]) -> Iterator[str]:
        for event in self.client.stream("chat/completions", self._payload(messages)):
            choices: List[dict] = event.get("choices") or []
            if not choices:
                continue
            delta = choices[0].get("delta", {}).get("content")
            if delta:
                yield delta
