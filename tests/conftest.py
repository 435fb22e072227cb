import asyncio

import pytest
from prometheus_client import CollectorRegistry

from coachcore.models import PromptPayload, ProviderResult


class ManualClock:
    """
    a clock that only moves when told to.
    """

    def __init__(self, start: "float" = 1_700_000_000.0) -> "None":
        self.now = start

    def __call__(self) -> "float":
        return self.now

    def advance(self, seconds: "float") -> "None":
        self.now += seconds


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def clock() -> "ManualClock":
    return ManualClock()


class FakeProvider:
    """
    A provider that replays pre-configured replies in order, repeating
    the last one. A reply is either a ProviderResult or an exception to
    raise. delay makes every call sleep first.
    """

    def __init__(
        self,
        name: "str",
        replies: "list[object]",
        model: "str" = "fake-model",
        delay: "float" = 0.0,
    ) -> "None":
        self._name = name
        self._model = model
        self._replies = list(replies)
        self._delay = delay
        self.calls: "list[tuple[PromptPayload, float, int]]" = []
        self.closed = False

    @property
    def name(self) -> "str":
        return self._name

    @property
    def model(self) -> "str":
        return self._model

    async def complete(
        self,
        payload: "PromptPayload",
        temperature: "float",
        max_tokens: "int",
    ) -> "ProviderResult":
        self.calls.append((payload, temperature, max_tokens))
        if self._delay:
            await asyncio.sleep(self._delay)
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def close(self) -> "None":
        self.closed = True


def result(content: "str", tokens_in: "int" = 10, tokens_out: "int" = 20) -> "ProviderResult":
    return ProviderResult(content=content, tokens_in=tokens_in, tokens_out=tokens_out)
