import os
from typing import Any, Dict, List, Optional

import requests

from medintake.core.llm_config import (
    OPENAI_BASE_URL,
    OPENAI_MODEL_CHAT,
    OPENAI_TIMEOUT_S,
)
from medintake.services.llm.chat_backend import ChatBackendError, Message, raise_for_status

class OpenAIChatBackend:
    """OpenAI-compatible /chat/completions over plain HTTP."""

    def __init__(
        self,
        model: str = OPENAI_MODEL_CHAT,
        base_url: str = OPENAI_BASE_URL,
        timeout_s: Optional[int] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s or OPENAI_TIMEOUT_S

    def complete(self, messages: List[Message], *, temperature: float, max_tokens: int) -> str:
        # read key at runtime (prevents stale cached value)
        api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise ChatBackendError("OPENAI_API_KEY is missing. Set it in config.env and restart.")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.post(
                f"{self.base_url}/chat/completions",
                headers=headers,
                json=payload,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise ChatBackendError(f"OpenAI request failed: {e}") from e

        raise_for_status("OpenAI", r.status_code, r.text)

        try:
            choices = r.json().get("choices") or []
        except ValueError as e:
            raise ChatBackendError(f"OpenAI returned non-JSON body: {r.text[:200]}") from e
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""
