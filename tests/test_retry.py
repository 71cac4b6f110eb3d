import pytest
from unittest.mock import AsyncMock

from llmgate.errors import TransportError, ValidationError
from llmgate.retry import RetryPolicy, is_retryable_error


class Flaky:
    """Operation failing with the given errors before succeeding."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestIsRetryableError:

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        assert is_retryable_error(TransportError("boom", status=status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_not_retried(self, status):
        assert not is_retryable_error(TransportError("boom", status=status))

    @pytest.mark.parametrize("code", ["connection-reset", "connection-refused", "timed-out", "ECONNRESET"])
    def test_retryable_codes(self, code):
        assert is_retryable_error(TransportError("socket closed", code=code))

    def test_timeout_in_message(self):
        assert is_retryable_error(RuntimeError("Request Timeout while reading"))

    def test_validation_error_not_retryable(self):
        assert not is_retryable_error(ValidationError("bad role"))

    def test_status_code_attribute_is_read(self):
        class VendorError(Exception):
            status_code = 503

        assert is_retryable_error(VendorError("unavailable"))


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self):
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleep)
        operation = Flaky(
            TransportError("unavailable", status=503),
            TransportError("unavailable", status=503),
        )

        assert await policy.execute(operation) == "ok"
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_exhaustion_rethrows_original_error(self):
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=AsyncMock())
        last = TransportError("still down", status=503)
        operation = Flaky(
            TransportError("down", status=503),
            TransportError("down", status=503),
            last,
        )

        with pytest.raises(TransportError) as exc_info:
            await policy.execute(operation)
        assert exc_info.value is last
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_linear_backoff(self):
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=4, base_delay=0.5, sleep=sleep)
        operation = Flaky(*[TransportError("reset", code="connection-reset") for _ in range(3)])

        await policy.execute(operation)
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0, 1.5]

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self):
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, sleep=sleep)
        error = TransportError("not found", status=404)
        operation = Flaky(error)

        with pytest.raises(TransportError) as exc_info:
            await policy.execute(operation)
        assert exc_info.value is error
        assert operation.calls == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_per_call_overrides(self):
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=5, base_delay=10.0, sleep=sleep)
        operation = Flaky(
            TransportError("down", status=502),
            TransportError("down", status=502),
        )

        with pytest.raises(TransportError):
            await policy.execute(operation, max_attempts=2, base_delay=0.1)
        assert operation.calls == 2
        sleep.assert_awaited_once_with(0.1)
