# medintake/services/llm/chat_backend.py
from typing import Dict, List, Optional, Protocol

from medintake.core import llm_config

Message = Dict[str, str]  # {"role": "system" | "user" | "assistant", "content": "..."}

class ChatBackendError(RuntimeError):
    """Any completion backend failure that should not be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

class ChatBackendRateLimited(ChatBackendError):
    """Backend answered with HTTP 429 (throttling)."""

def raise_for_status(provider: str, status_code: int, body: str) -> None:
    # classification is by status code only, never by reply text
    if status_code == 429:
        raise ChatBackendRateLimited(f"{provider} rate limited: {body[:200]}", status_code=429)
    if status_code >= 400:
        raise ChatBackendError(f"{provider} {status_code}: {body[:200]}", status_code=status_code)

class ChatBackend(Protocol):
    def complete(
        self,
        messages: List[Message],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str: ...

def get_chat_backend(provider: Optional[str] = None) -> ChatBackend:
    name = (provider or llm_config.LLM_PROVIDER).strip().lower()
    if name == "ollama":
        from medintake.services.ollama_client import OllamaChatBackend
        return OllamaChatBackend()
    if name in ("hf", "huggingface"):
        from medintake.services.hf_client import HFChatBackend
        return HFChatBackend()
    if name == "openai":
        from medintake.services.openai_client import OpenAIChatBackend
        return OpenAIChatBackend()
    raise ValueError(f"Unknown LLM_PROVIDER: {name!r} (expected ollama, hf or openai)")
