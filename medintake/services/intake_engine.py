# medintake/services/intake_engine.py
"""
Conversational slot-filling for a single medication.

One IntakeEngine owns one transcript. Each user turn is sent to the completion
backend together with the fixed intake system prompt; the reply either keeps
the conversation going or carries a MEDICATION_COMPLETE payload that is
validated into a MedicationDraft.

Recovery rules:
  - rate limited (HTTP 429): retry the same transcript with exponential backoff
  - other backend errors: tell the user to try again, keep the transcript
  - bad completion payload: restart the conversation from an empty transcript
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

from medintake.core.llm_config import (
    CHAT_MAX_RETRIES,
    CHAT_MAX_TOKENS,
    CHAT_RETRY_BASE_DELAY_S,
    CHAT_TEMPERATURE,
)
from medintake.schemas.models import ChatResult, Turn
from medintake.services.llm.chat_backend import (
    ChatBackend,
    ChatBackendError,
    ChatBackendRateLimited,
)
from medintake.services.llm.intake_prompt import INTAKE_SYSTEM_PROMPT
from medintake.services.llm.intake_sanitize import (
    PayloadValidationError,
    parse_medication_payload,
    split_completion,
)

logger = logging.getLogger(__name__)

GREETING = "Hello! I'm your medication assistant. What medication would you like to add?"
CONFIRMATION = "Great! I'll add this medication to your list."
RESTART_MESSAGE = (
    "I encountered an error processing the medication details. "
    "Let's try again from the beginning. What medication would you like to add?"
)
EMPTY_REPLY = "Sorry, I couldn't process that."
GENERIC_ERROR = "Sorry, I encountered an error. Please try again."
HIGH_DEMAND_ERROR = "We're experiencing high demand. Please try again in a few minutes."

class ConversationBusyError(RuntimeError):
    """submit_user_message was called while a previous call is still running."""

class RetryPolicy(BaseModel):
    max_retries: int = Field(default=CHAT_MAX_RETRIES, ge=0)
    base_delay_s: float = Field(default=CHAT_RETRY_BASE_DELAY_S, ge=0)

    def delay_for(self, attempt: int) -> float:
        # attempt 0 -> 1x base, 1 -> 2x, 2 -> 4x
        return self.base_delay_s * (2 ** attempt)

class IntakeEngine:
    def __init__(
        self,
        backend: ChatBackend,
        retry_policy: Optional[RetryPolicy] = None,
        temperature: float = CHAT_TEMPERATURE,
        max_tokens: int = CHAT_MAX_TOKENS,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.backend = backend
        self.retry_policy = retry_policy or RetryPolicy()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._sleep = sleep
        self._turns: List[Turn] = []
        self._in_flight = threading.Lock()

    @property
    def transcript(self) -> List[Turn]:
        return list(self._turns)

    def start(self) -> Turn:
        """Begin a fresh conversation with the greeting turn. No backend call.

        Raises ConversationBusyError while a message is being processed.
        """
        with self._exclusive():
            self._turns = []
            return self._append("assistant", GREETING)

    def reset(self) -> None:
        with self._exclusive():
            self._turns = []

    def submit_user_message(
        self,
        text: str,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[ChatResult]:
        """
        Append the user's turn and run one backend exchange.

        Blank text is ignored (returns None, nothing is sent). Raises
        ConversationBusyError if another call on this engine is still running.
        """
        if not text or not text.strip():
            return None

        with self._exclusive():
            self._append("user", text)
            return self._exchange(cancel)

    # ---------------------------
    # internals
    # ---------------------------
    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        # start/reset/submit never interleave on one transcript
        if not self._in_flight.acquire(blocking=False):
            raise ConversationBusyError("A message is already being processed for this conversation.")
        try:
            yield
        finally:
            self._in_flight.release()

    def _append(self, role: str, content: str) -> Turn:
        turn = Turn(role=role, content=content)
        self._turns.append(turn)
        return turn

    def _messages(self) -> List[Dict[str, str]]:
        msgs = [{"role": "system", "content": INTAKE_SYSTEM_PROMPT}]
        msgs.extend({"role": t.role, "content": t.content} for t in self._turns)
        return msgs

    def _exchange(self, cancel: Optional[threading.Event]) -> ChatResult:
        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                return ChatResult(status="cancelled")
            try:
                reply = self.backend.complete(
                    self._messages(),
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
            except ChatBackendRateLimited as e:
                if attempt < self.retry_policy.max_retries:
                    delay = self.retry_policy.delay_for(attempt)
                    attempt += 1
                    logger.info("Backend rate limited, retry %s/%s in %.1fs",
                                attempt, self.retry_policy.max_retries, delay)
                    self._pause(delay, cancel)
                    continue
                logger.warning("Backend still rate limited after %s retries: %s", attempt, e)
                return self._fail(HIGH_DEMAND_ERROR, cancel)
            except ChatBackendError as e:
                logger.error("Backend call failed: %s", e)
                return self._fail(GENERIC_ERROR, cancel)
            except Exception:
                logger.exception("Unexpected backend failure")
                return self._fail(GENERIC_ERROR, cancel)

            if cancel is not None and cancel.is_set():
                return ChatResult(status="cancelled")
            return self._handle_reply(reply or EMPTY_REPLY)

    def _pause(self, delay: float, cancel: Optional[threading.Event]) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif cancel is not None:
            cancel.wait(delay)
        else:
            time.sleep(delay)

    def _fail(self, message: str, cancel: Optional[threading.Event]) -> ChatResult:
        if cancel is not None and cancel.is_set():
            return ChatResult(status="cancelled")
        self._append("assistant", message)
        return ChatResult(status="error", message=message)

    def _handle_reply(self, reply: str) -> ChatResult:
        payload = split_completion(reply)
        if payload is None:
            self._append("assistant", reply)
            return ChatResult(status="continue", assistant_reply=reply)

        try:
            draft = parse_medication_payload(payload)
        except PayloadValidationError as e:
            logger.warning("Discarding medication payload (missing=%s, invalid_times=%s), restarting conversation",
                           e.missing_fields, len(e.invalid_times))
            return self._restart()
        except (ValueError, TypeError, RecursionError) as e:
            logger.warning("Discarding unparseable medication payload (%s), restarting conversation",
                           type(e).__name__)
            return self._restart()

        self._append("assistant", CONFIRMATION)
        logger.info("Medication intake complete after %s turns", len(self._turns))
        return ChatResult(status="complete", draft=draft)

    def _restart(self) -> ChatResult:
        self._turns = []
        self._append("assistant", RESTART_MESSAGE)
        return ChatResult(status="continue", assistant_reply=RESTART_MESSAGE)
