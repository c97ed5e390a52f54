import os
from typing import List, Optional

from huggingface_hub import InferenceClient
from huggingface_hub.errors import HfHubHTTPError, InferenceTimeoutError

from medintake.core.llm_config import HF_MODEL_CHAT, HF_TIMEOUT_S
from medintake.services.llm.chat_backend import (
    ChatBackendError,
    ChatBackendRateLimited,
    Message,
)

class HFChatBackend:
    def __init__(self, model: str = HF_MODEL_CHAT, timeout_s: Optional[int] = None):
        self.model = model
        self.timeout_s = timeout_s or HF_TIMEOUT_S

    def complete(self, messages: List[Message], *, temperature: float, max_tokens: int) -> str:
        # read token + provider at runtime (prevents stale cached value)
        token = os.getenv("HF_TOKEN", "").strip()
        if not token:
            raise ChatBackendError("HF_TOKEN is missing. Set it in config.env and restart.")
        provider = os.getenv("HF_PROVIDER", "auto").strip() or "auto"

        client = InferenceClient(
            provider=provider,
            api_key=token,
            timeout=float(self.timeout_s),
        )

        try:
            out = client.chat_completion(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except HfHubHTTPError as e:
            status = getattr(e.response, "status_code", None)
            if status == 429:
                raise ChatBackendRateLimited(f"HF rate limited: {e}", status_code=429) from e
            raise ChatBackendError(f"HF {status}: {e}", status_code=status) from e
        except InferenceTimeoutError as e:
            raise ChatBackendError(f"HF timed out after {self.timeout_s}s") from e

        if not out.choices:
            return ""
        return out.choices[0].message.content or ""
