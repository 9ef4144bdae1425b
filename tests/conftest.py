import os
from datetime import date, datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

# Pin the default zone so naive references resolve the same way everywhere.
os.environ['APP_TIMEZONE'] = 'Asia/Taipei'
os.environ.setdefault('LLM_DEBUG', '0')

TZ = ZoneInfo('Asia/Taipei')


@pytest.fixture
def tz():
    return TZ


@pytest.fixture
def reference():
    # Monday
    return datetime(2024, 1, 1, 10, 0, tzinfo=TZ)


@pytest.fixture
def today():
    return date(2024, 1, 1)


# -------------------------
# fake OpenAI async client
# -------------------------
def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:

    def __init__(self, parts):
        self._parts = parts

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        yield SimpleNamespace(choices=[])
        for part in self._parts:
            yield _chunk(part)
        yield _chunk(None)


class FakeCompletions:

    def __init__(self, parts=None, error=None):
        self.parts = parts or []
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return FakeStream(self.parts)


@pytest.fixture
def fake_client():
    """Factory: ``fake_client(parts)`` streams ``parts``; ``fake_client(error=exc)`` raises."""

    def build(parts=None, error=None):
        completions = FakeCompletions(parts, error)
        return SimpleNamespace(chat=SimpleNamespace(completions=completions))

    return build
