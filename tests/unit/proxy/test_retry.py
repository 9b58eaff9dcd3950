"""
Tests unitaires du retry sur 429 (unaire et streaming).
"""
import pytest

from llm_gateway.core.exceptions import UpstreamError, UpstreamRateLimitError
from llm_gateway.proxy.retry import safe_retry_count, stream_with_429_retry, with_429_retry

pytestmark = pytest.mark.anyio


def _rate_limited():
    return UpstreamRateLimitError("rate limit exceeded", provider="fake")


@pytest.mark.parametrize("value,expected", [(3, 3), (0, 0), (-2, 0), (None, 0), ("x", 0), ("2", 2)])
def test_safe_retry_count(value, expected):
    assert safe_retry_count(value) == expected


async def test_unary_retries_then_succeeds():
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise _rate_limited()
        return "ok"

    assert await with_429_retry(operation, retries=2) == "ok"
    assert len(calls) == 3


async def test_unary_gives_up_after_retries():
    calls = []

    async def operation():
        calls.append(1)
        raise _rate_limited()

    with pytest.raises(UpstreamRateLimitError):
        await with_429_retry(operation, retries=1)

    assert len(calls) == 2


async def test_unary_other_errors_not_retried():
    calls = []

    async def operation():
        calls.append(1)
        raise UpstreamError("boom", status=500)

    with pytest.raises(UpstreamError):
        await with_429_retry(operation, retries=5)

    assert len(calls) == 1


async def test_stream_retried_before_first_item():
    attempts = []

    async def factory():
        attempts.append(1)
        if len(attempts) == 1:
            raise _rate_limited()
        yield "a"
        yield "b"

    items = [item async for item in stream_with_429_retry(factory, retries=1)]

    assert items == ["a", "b"]
    assert len(attempts) == 2


async def test_stream_not_replayed_after_first_item():
    attempts = []

    async def factory():
        attempts.append(1)
        yield "a"
        raise _rate_limited()

    items = []
    with pytest.raises(UpstreamRateLimitError):
        async for item in stream_with_429_retry(factory, retries=3):
            items.append(item)

    assert items == ["a"]
    assert len(attempts) == 1
