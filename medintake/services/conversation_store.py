import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from medintake.schemas.models import MedicationDraft
from medintake.services.intake_engine import IntakeEngine

_TTL_SEC = 60 * 60  # 1 hour idle

@dataclass
class Conversation:
    conversation_id: str
    owner_id: str
    engine: IntakeEngine
    cancel: threading.Event = field(default_factory=threading.Event)
    expires_at: float = 0.0
    # validated draft whose insert failed; the next message retries storage
    pending_draft: Optional[MedicationDraft] = None

class ConversationStore:
    """In-process registry: one IntakeEngine per active conversation."""

    def __init__(self, engine_factory: Callable[[], IntakeEngine], ttl_sec: int = _TTL_SEC):
        self._engine_factory = engine_factory
        self._ttl_sec = ttl_sec
        self._items: Dict[str, Conversation] = {}
        self._lock = threading.Lock()

    def _now(self) -> float:
        return time.time()

    def create(self, owner_id: str) -> Conversation:
        conv = Conversation(
            conversation_id="conv_" + uuid.uuid4().hex,
            owner_id=owner_id,
            engine=self._engine_factory(),
            expires_at=self._now() + self._ttl_sec,
        )
        conv.engine.start()
        with self._lock:
            self._purge_expired()
            self._items[conv.conversation_id] = conv
        return conv

    def get(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._items.get(conversation_id)
            if conv is None:
                return None
            if conv.expires_at < self._now():
                self._items.pop(conversation_id, None)
                conv.cancel.set()
                return None
            conv.expires_at = self._now() + self._ttl_sec
            return conv

    def discard(self, conversation_id: str) -> bool:
        """Drop a conversation; an in-flight turn sees the cancel flag and stops."""
        with self._lock:
            conv = self._items.pop(conversation_id, None)
        if conv is None:
            return False
        conv.cancel.set()
        return True

    def _purge_expired(self) -> None:
        now = self._now()
        for cid in [c for c, v in self._items.items() if v.expires_at < now]:
            self._items.pop(cid).cancel.set()

def _default_engine() -> IntakeEngine:
    from medintake.services.llm.chat_backend import get_chat_backend
    return IntakeEngine(get_chat_backend())

_conversations: Optional[ConversationStore] = None

def get_conversation_store() -> ConversationStore:
    global _conversations
    if _conversations is None:
        _conversations = ConversationStore(_default_engine)
    return _conversations
