from typing import Any, Dict, List, Optional

import requests

from medintake.core.llm_config import (
    OLLAMA_BASE_URL,
    OLLAMA_MODEL_CHAT,
    OLLAMA_TIMEOUT_S,
)
from medintake.services.llm.chat_backend import ChatBackendError, Message, raise_for_status

class OllamaChatBackend:
    """Multi-turn chat against Ollama /api/chat (plain text reply, no JSON format)."""

    def __init__(
        self,
        model: str = OLLAMA_MODEL_CHAT,
        base_url: str = OLLAMA_BASE_URL,
        timeout_s: Optional[int] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s or OLLAMA_TIMEOUT_S

    def complete(self, messages: List[Message], *, temperature: float, max_tokens: int) -> str:
        url = f"{self.base_url}/chat"
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        try:
            r = requests.post(url, json=payload, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise ChatBackendError(f"Ollama request failed: {e}") from e

        raise_for_status("Ollama", r.status_code, r.text)

        try:
            data = r.json()
        except ValueError as e:
            raise ChatBackendError(f"Ollama returned non-JSON body: {r.text[:200]}") from e
        return (data.get("message") or {}).get("content", "") or ""
