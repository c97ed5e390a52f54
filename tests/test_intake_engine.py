import threading
import time

import pytest

from medintake.services.intake_engine import (
    CONFIRMATION,
    EMPTY_REPLY,
    GENERIC_ERROR,
    GREETING,
    HIGH_DEMAND_ERROR,
    RESTART_MESSAGE,
    ConversationBusyError,
    IntakeEngine,
    RetryPolicy,
)
from medintake.services.llm.chat_backend import ChatBackendError, ChatBackendRateLimited
from medintake.services.llm.intake_prompt import INTAKE_SYSTEM_PROMPT

from conftest import FakeBackend

COMPLETE = (
    'MEDICATION_COMPLETE:{"medication_name":"Aspirin","dosage":"500","dosage_unit":"mg",'
    '"frequency":"daily","times_per_frequency":2,"preferred_time":["morning","evening"]}'
)
BAD_TIME = (
    'MEDICATION_COMPLETE:{"medication_name":"Aspirin","dosage":"500","dosage_unit":"mg",'
    '"frequency":"daily","times_per_frequency":2,"preferred_time":["noon"]}'
)
NO_UNIT = (
    'MEDICATION_COMPLETE:{"medication_name":"Aspirin","dosage":"500",'
    '"frequency":"daily","times_per_frequency":2,"preferred_time":["morning"]}'
)
SCALAR_TIME = (
    'MEDICATION_COMPLETE:{"medication_name":"Aspirin","dosage":"500","dosage_unit":"mg",'
    '"frequency":"daily","times_per_frequency":1,"preferred_time":"morning"}'
)


def _roles(engine):
    return [(t.role, t.content) for t in engine.transcript]


def test_start_appends_greeting_without_backend_call(make_engine):
    engine, backend = make_engine([])
    turn = engine.start()
    assert turn.content == GREETING
    assert _roles(engine) == [("assistant", GREETING)]
    assert backend.calls == []


def test_start_again_discards_previous_transcript(make_engine):
    engine, _ = make_engine(["What dosage?"])
    engine.start()
    engine.submit_user_message("Aspirin")
    engine.start()
    assert _roles(engine) == [("assistant", GREETING)]


def test_reset_clears_transcript(make_engine):
    engine, _ = make_engine([])
    engine.start()
    engine.reset()
    assert engine.transcript == []


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_input_is_a_no_op(make_engine, text):
    engine, backend = make_engine([])
    engine.start()
    assert engine.submit_user_message(text) is None
    assert _roles(engine) == [("assistant", GREETING)]
    assert backend.calls == []


def test_plain_reply_is_appended_verbatim(make_engine):
    engine, backend = make_engine(["Got it. What is the dosage?"])
    engine.start()
    result = engine.submit_user_message("I take aspirin")
    assert result.status == "continue"
    assert result.assistant_reply == "Got it. What is the dosage?"
    assert _roles(engine) == [
        ("assistant", GREETING),
        ("user", "I take aspirin"),
        ("assistant", "Got it. What is the dosage?"),
    ]


def test_request_is_system_prompt_plus_full_transcript(make_engine):
    engine, backend = make_engine(["What dosage?"], temperature=0.7, max_tokens=250)
    engine.start()
    engine.submit_user_message("Aspirin")
    sent = backend.calls[0]
    assert sent[0] == {"role": "system", "content": INTAKE_SYSTEM_PROMPT}
    assert sent[1:] == [
        {"role": "assistant", "content": GREETING},
        {"role": "user", "content": "Aspirin"},
    ]
    assert backend.kwargs[0] == {"temperature": 0.7, "max_tokens": 250}


def test_system_prompt_describes_schema_and_marker():
    for name in ("medication_name", "dosage", "dosage_unit", "frequency", "times_per_frequency",
                 "preferred_time", "remaining_quantity", "notes"):
        assert name in INTAKE_SYSTEM_PROMPT
    for t in ("morning", "afternoon", "evening", "bedtime"):
        assert t in INTAKE_SYSTEM_PROMPT
    assert "MEDICATION_COMPLETE:" in INTAKE_SYSTEM_PROMPT


def test_empty_reply_uses_fallback_text(make_engine):
    engine, _ = make_engine([""])
    engine.start()
    result = engine.submit_user_message("hi")
    assert result.assistant_reply == EMPTY_REPLY


def test_complete_payload_returns_draft(make_engine):
    engine, _ = make_engine([COMPLETE])
    engine.start()
    result = engine.submit_user_message("twice daily, morning and evening")
    assert result.status == "complete"
    assert result.draft.times_per_frequency == 2
    assert isinstance(result.draft.times_per_frequency, int)
    assert result.draft.preferred_time == ["morning", "evening"]
    assert engine.transcript[-1].content == CONFIRMATION


def test_invalid_time_restarts_conversation(make_engine):
    engine, _ = make_engine([BAD_TIME])
    engine.start()
    engine.submit_user_message("at noon")
    result = engine.transcript
    assert _roles(engine) == [("assistant", RESTART_MESSAGE)]
    assert len(result) == 1


def test_invalid_time_result_is_continue_with_restart_message(make_engine):
    engine, _ = make_engine([BAD_TIME])
    engine.start()
    result = engine.submit_user_message("at noon")
    assert result.status == "continue"
    assert result.assistant_reply == RESTART_MESSAGE


def test_missing_required_field_restarts_conversation(make_engine):
    engine, _ = make_engine([NO_UNIT])
    engine.start()
    result = engine.submit_user_message("500")
    assert result.status == "continue"
    assert result.assistant_reply == RESTART_MESSAGE
    assert _roles(engine) == [("assistant", RESTART_MESSAGE)]


def test_garbage_after_marker_restarts_conversation(make_engine):
    engine, _ = make_engine(["MEDICATION_COMPLETE: sorry, no json here"])
    engine.start()
    result = engine.submit_user_message("done")
    assert result.assistant_reply == RESTART_MESSAGE
    assert len(engine.transcript) == 1


def test_scalar_preferred_time_is_accepted(make_engine):
    engine, _ = make_engine([SCALAR_TIME])
    engine.start()
    result = engine.submit_user_message("mornings")
    assert result.status == "complete"
    assert result.draft.preferred_time == ["morning"]


def test_restart_then_resume(make_engine):
    engine, backend = make_engine([BAD_TIME, COMPLETE])
    engine.start()
    engine.submit_user_message("at noon")
    result = engine.submit_user_message("Aspirin 500mg twice daily, morning and evening")
    assert result.status == "complete"
    assert result.draft.medication_name == "Aspirin"
    # second request starts from the restart message, not the old transcript
    assert backend.calls[1][1:] == [
        {"role": "assistant", "content": RESTART_MESSAGE},
        {"role": "user", "content": "Aspirin 500mg twice daily, morning and evening"},
    ]


def test_rate_limit_backoff_then_gives_up(make_engine, sleeper):
    engine, backend = make_engine([ChatBackendRateLimited("429", status_code=429)] * 4)
    engine.start()
    result = engine.submit_user_message("Aspirin")
    assert sleeper.delays == [1.0, 2.0, 4.0]
    assert result.status == "error"
    assert result.message == HIGH_DEMAND_ERROR
    assert len(backend.calls) == 4
    assert _roles(engine) == [
        ("assistant", GREETING),
        ("user", "Aspirin"),
        ("assistant", HIGH_DEMAND_ERROR),
    ]


def test_rate_limit_retry_reuses_same_transcript(make_engine, sleeper):
    engine, backend = make_engine([ChatBackendRateLimited("429", status_code=429), "What dosage?"])
    engine.start()
    result = engine.submit_user_message("Aspirin")
    assert result.status == "continue"
    assert sleeper.delays == [1.0]
    assert backend.calls[0] == backend.calls[1]
    assert len(engine.transcript) == 3


def test_backoff_follows_configured_base_delay(sleeper):
    backend = FakeBackend([ChatBackendRateLimited("429")] * 3)
    engine = IntakeEngine(backend, retry_policy=RetryPolicy(max_retries=2, base_delay_s=0.5), sleep=sleeper)
    result = engine.submit_user_message("Aspirin")
    assert sleeper.delays == [0.5, 1.0]
    assert result.message == HIGH_DEMAND_ERROR


def test_other_backend_error_is_not_retried(make_engine, sleeper):
    engine, backend = make_engine([ChatBackendError("401 unauthorized", status_code=401)])
    engine.start()
    result = engine.submit_user_message("Aspirin")
    assert result.status == "error"
    assert result.message == GENERIC_ERROR
    assert sleeper.delays == []
    assert len(backend.calls) == 1
    # transcript is kept so the user can resend
    assert _roles(engine)[:2] == [("assistant", GREETING), ("user", "Aspirin")]


def test_unexpected_exception_is_absorbed(make_engine):
    engine, _ = make_engine([ValueError("boom")])
    engine.start()
    result = engine.submit_user_message("Aspirin")
    assert result.status == "error"
    assert result.message == GENERIC_ERROR


def test_user_can_resend_after_error(make_engine):
    engine, _ = make_engine([ChatBackendError("down"), "What dosage?"])
    engine.start()
    engine.submit_user_message("Aspirin")
    result = engine.submit_user_message("Aspirin")
    assert result.status == "continue"
    assert result.assistant_reply == "What dosage?"


def test_cancel_before_call_skips_backend(make_engine):
    engine, backend = make_engine([])
    engine.start()
    cancel = threading.Event()
    cancel.set()
    result = engine.submit_user_message("Aspirin", cancel=cancel)
    assert result.status == "cancelled"
    assert backend.calls == []


def test_cancel_during_backoff_stops_retrying():
    cancel = threading.Event()
    backend = FakeBackend([ChatBackendRateLimited("429")] * 4)
    engine = IntakeEngine(backend, sleep=lambda _delay: cancel.set())
    engine.start()
    result = engine.submit_user_message("Aspirin", cancel=cancel)
    assert result.status == "cancelled"
    assert len(backend.calls) == 1
    assert [t.role for t in engine.transcript] == ["assistant", "user"]


def test_cancel_while_waiting_for_reply_leaves_transcript_alone():
    cancel = threading.Event()

    class SlowBackend:
        def complete(self, messages, *, temperature, max_tokens):
            cancel.set()
            return "What dosage?"

    engine = IntakeEngine(SlowBackend())
    engine.start()
    result = engine.submit_user_message("Aspirin", cancel=cancel)
    assert result.status == "cancelled"
    assert [t.role for t in engine.transcript] == ["assistant", "user"]


def test_concurrent_submit_raises_busy():
    seen = {}

    class ReentrantBackend:
        def __init__(self):
            self.engine = None

        def complete(self, messages, *, temperature, max_tokens):
            try:
                self.engine.submit_user_message("again")
            except ConversationBusyError as e:
                seen["error"] = e
            return "What dosage?"

    backend = ReentrantBackend()
    engine = IntakeEngine(backend)
    backend.engine = engine
    engine.start()
    result = engine.submit_user_message("Aspirin")
    assert isinstance(seen.get("error"), ConversationBusyError)
    assert result.status == "continue"
    # lock is released afterwards
    engine.backend = FakeBackend(["Which unit?"])
    assert engine.submit_user_message("500").status == "continue"


def test_retry_policy_delays():
    policy = RetryPolicy(max_retries=3, base_delay_s=1.0)
    assert [policy.delay_for(n) for n in range(3)] == [1.0, 2.0, 4.0]


@pytest.mark.parametrize("action", ["reset", "start"])
def test_reset_or_start_during_exchange_raises_busy(action):
    seen = {}

    class InterruptingBackend:
        def __init__(self):
            self.engine = None

        def complete(self, messages, *, temperature, max_tokens):
            try:
                getattr(self.engine, action)()
            except ConversationBusyError as e:
                seen["error"] = e
            return "What dosage?"

    backend = InterruptingBackend()
    engine = IntakeEngine(backend)
    backend.engine = engine
    engine.start()
    result = engine.submit_user_message("Aspirin")
    assert isinstance(seen.get("error"), ConversationBusyError)
    assert result.status == "continue"
    # the reply lands on the transcript it was generated for
    assert _roles(engine) == [
        ("assistant", GREETING),
        ("user", "Aspirin"),
        ("assistant", "What dosage?"),
    ]
    engine.reset()
    assert engine.transcript == []


def test_oversized_count_restarts_instead_of_raising(make_engine):
    payload = (
        'MEDICATION_COMPLETE:{"medication_name":"Aspirin","dosage":"500","dosage_unit":"mg",'
        '"frequency":"daily","times_per_frequency":"' + "9" * 5000 + '","preferred_time":["morning"]}'
    )
    engine, _ = make_engine([payload])
    engine.start()
    result = engine.submit_user_message("done")
    assert result.status == "continue"
    assert result.assistant_reply == RESTART_MESSAGE
    assert _roles(engine) == [("assistant", RESTART_MESSAGE)]


def test_deeply_nested_payload_restarts_instead_of_raising(make_engine):
    engine, _ = make_engine(["MEDICATION_COMPLETE:" + "[" * 100000 + "]" * 100000])
    engine.start()
    result = engine.submit_user_message("done")
    assert result.assistant_reply == RESTART_MESSAGE
    assert len(engine.transcript) == 1


def test_cancel_wakes_backoff_wait():
    cancel = threading.Event()
    backend = FakeBackend([ChatBackendRateLimited("429")] * 4)
    engine = IntakeEngine(backend, retry_policy=RetryPolicy(max_retries=3, base_delay_s=30.0))
    engine.start()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        began = time.monotonic()
        result = engine.submit_user_message("Aspirin", cancel=cancel)
        elapsed = time.monotonic() - began
    finally:
        timer.cancel()
    assert result.status == "cancelled"
    assert elapsed < 10
    assert len(backend.calls) == 1


def test_restart_log_leaves_out_payload_content(make_engine, caplog):
    garbled = "MEDICATION_COMPLETE: Warfarin 5mg at noon, sorry no json"
    engine, _ = make_engine([BAD_TIME, garbled])
    engine.start()
    with caplog.at_level("WARNING", logger="medintake.services.intake_engine"):
        engine.submit_user_message("Aspirin at noon")
        engine.submit_user_message("Warfarin")
    assert len(caplog.records) == 2
    assert all("Discarding" in r.getMessage() for r in caplog.records)
    assert not any("Aspirin" in r.getMessage() or "Warfarin" in r.getMessage() for r in caplog.records)
