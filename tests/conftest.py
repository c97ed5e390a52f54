from typing import Any, Dict, List

import pytest

from medintake.services.intake_engine import IntakeEngine, RetryPolicy


class FakeBackend:
    """Scripted completion backend: each item is a reply string or an exception to raise."""

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.calls: List[List[Dict[str, str]]] = []
        self.kwargs: List[Dict[str, Any]] = []

    def complete(self, messages, *, temperature, max_tokens):
        self.calls.append([dict(m) for m in messages])
        self.kwargs.append({"temperature": temperature, "max_tokens": max_tokens})
        if not self.script:
            raise AssertionError("FakeBackend called more times than scripted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def make_engine(sleeper):
    def _make(script, **kwargs):
        backend = FakeBackend(script)
        kwargs.setdefault("retry_policy", RetryPolicy(max_retries=3, base_delay_s=1.0))
        engine = IntakeEngine(backend, sleep=sleeper, **kwargs)
        return engine, backend
    return _make
