"""
Tests for retry helpers.
"""

import pytest

from ztoken import retry
from ztoken.errors import ExchangeError, ExchangeErrorKind, SigningError


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(retry, "compute_backoff", lambda *args, **kwargs: 0.0)


class Flaky:
    """Raises the given errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def unavailable():
    return ExchangeError(ExchangeErrorKind.UNAVAILABLE, status_code=503)


class TestCallWithRetry:

    def test_retries_unavailable(self):
        fn = Flaky(unavailable(), unavailable())
        assert retry.call_with_retry(fn, attempts=3) == "ok"
        assert fn.calls == 3

    def test_gives_up_after_attempts(self):
        fn = Flaky(unavailable(), unavailable(), unavailable())
        with pytest.raises(ExchangeError):
            retry.call_with_retry(fn, attempts=3)
        assert fn.calls == 3

    def test_forbidden_not_retried(self):
        fn = Flaky(ExchangeError(ExchangeErrorKind.FORBIDDEN, status_code=403))
        with pytest.raises(ExchangeError):
            retry.call_with_retry(fn, attempts=3)
        assert fn.calls == 1

    def test_signing_error_not_retried(self):
        fn = Flaky(SigningError("bad key"))
        with pytest.raises(SigningError):
            retry.call_with_retry(fn)
        assert fn.calls == 1

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            retry.call_with_retry(Flaky(), attempts=0)


class TestAsyncCallWithRetry:

    @pytest.mark.asyncio
    async def test_retries_unavailable(self):
        fn = Flaky(unavailable())

        async def call():
            return fn()

        assert await retry.async_call_with_retry(call, attempts=2) == "ok"
        assert fn.calls == 2

    @pytest.mark.asyncio
    async def test_forbidden_not_retried(self):
        fn = Flaky(ExchangeError(ExchangeErrorKind.FORBIDDEN))

        async def call():
            return fn()

        with pytest.raises(ExchangeError):
            await retry.async_call_with_retry(call)
        assert fn.calls == 1


class TestComputeBackoff:

    def test_grows_with_attempt(self, monkeypatch):
        monkeypatch.undo()
        assert retry.compute_backoff(0, base=2.0, jitter=0.0) == 1.0
        assert retry.compute_backoff(3, base=2.0, jitter=0.0) == 8.0

    def test_jitter_bounded(self, monkeypatch):
        monkeypatch.undo()
        delay = retry.compute_backoff(1, base=2.0, jitter=0.5)
        assert 2.0 <= delay <= 2.5
