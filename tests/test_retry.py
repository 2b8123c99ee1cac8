"""Tests for gateway error classification and backoff."""

import pytest

from bankpay.engine.retry import PermanentError, ProviderError, RateLimitError, error_for_status, with_retry


class Flaky:
    """Fails with the given errors, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestErrorForStatus:
    def test_success(self):
        assert error_for_status(200) is None
        assert error_for_status(204) is None

    def test_rate_limit(self):
        assert isinstance(error_for_status(429, "slow down"), RateLimitError)

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_errors_are_retriable(self, status):
        error = error_for_status(status)
        assert type(error) is ProviderError
        assert error.retriable
        assert error.status_code == status

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_errors_are_permanent(self, status):
        error = error_for_status(status, "bad")
        assert isinstance(error, PermanentError)
        assert not error.retriable


@pytest.mark.asyncio
async def test_succeeds_after_transient_errors():
    """Retriable errors are retried until the call succeeds."""
    func = Flaky(ProviderError("503", status_code=503), RateLimitError(retry_after=0))

    assert await with_retry(func, base_delay=0) == "ok"
    assert func.calls == 3


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    """A permanent error is raised on the first attempt."""
    func = Flaky(PermanentError("rejected"))

    with pytest.raises(PermanentError):
        await with_retry(func, base_delay=0)
    assert func.calls == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    """The last error is raised once retries are exhausted."""
    func = Flaky(*[ProviderError("down", status_code=503) for _ in range(5)])

    with pytest.raises(ProviderError, match="down"):
        await with_retry(func, max_retries=2, base_delay=0)
    assert func.calls == 3


@pytest.mark.asyncio
async def test_other_exceptions_propagate():
    """Non-gateway exceptions are never retried."""
    func = Flaky(KeyError("x"))

    with pytest.raises(KeyError):
        await with_retry(func, base_delay=0)
    assert func.calls == 1
