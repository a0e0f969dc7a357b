import random

import pytest

from cpc.core import (
    ErrorCode, ErrorRegistry, Operation, RetryEngine, RetryError, RetryPolicy, TimeoutSupervisor,
    compute_delay, retry_on_exit_codes, retrying,
)


@pytest.fixture
def engine(sleeps):
    errors = ErrorRegistry()
    return RetryEngine(errors, TimeoutSupervisor(errors, grace_period=0.5), sleep=sleeps.append, jitter=False)


@pytest.mark.parametrize("attempt,base,max_delay,expected", [
    (1, 2, 60, 2),
    (2, 2, 60, 4),
    (3, 2, 60, 8),
    (6, 2, 60, 60),
    (4, 5, 30, 30),
])
def test_compute_delay_without_jitter(attempt, base, max_delay, expected):
    assert compute_delay(attempt, base, max_delay, jitter=False) == expected


def test_compute_delay_has_a_floor():
    assert compute_delay(1, 0.1, 60, jitter=False) == 1
    assert compute_delay(1, 0, 60, jitter=False) == 1


def test_compute_delay_jitter_stays_within_a_quarter():
    rng = random.Random(42)
    for attempt in range(1, 8):
        nominal = min(2 * 2 ** (attempt - 1), 60)
        delay = compute_delay(attempt, 2, 60, rng=rng)
        assert max(nominal * 0.75, 1) <= delay <= nominal * 1.25


def test_compute_delay_rejects_attempt_zero():
    with pytest.raises(ValueError):
        compute_delay(0, 2, 60)


def test_always_failing_command_runs_max_retries_plus_one(engine, sleeps, counter):
    op = Operation(command=counter(), name="flaky", retry_policy=RetryPolicy(max_retries=2, base_delay=2, max_delay=60))

    result = engine.execute(op)

    assert not result
    assert result.exit_code == 1
    assert result.attempts == 3
    assert counter.runs() == 3
    assert sleeps == [2, 4]
    assert engine.errors.count == 1
    assert engine.errors.last.code is ErrorCode.EXECUTION
    assert "flaky failed after 2 retries" in engine.errors.last.message


def test_succeeds_on_third_attempt(engine, sleeps, counter):
    op = Operation(command=counter(succeed_on=3), name="apply", retry_policy=RetryPolicy(max_retries=3))

    result = engine.execute(op)

    assert result.success
    assert result.attempts == 3
    assert sleeps == [2, 4]
    assert engine.errors.count == 0


def test_zero_retries_means_single_attempt(engine, sleeps, counter):
    result = engine.execute(Operation(command=counter(), name="once", retry_policy=RetryPolicy(max_retries=0)))
    assert result.attempts == 1
    assert counter.runs() == 1
    assert sleeps == []


def test_retry_condition_stops_early(engine, sleeps, counter):
    policy = RetryPolicy(max_retries=5, retry_condition=retry_on_exit_codes(28))
    result = engine.execute(Operation(command=counter(fail_code=3), name="fetch", retry_policy=policy))

    assert not result.success
    assert result.exit_code == 3
    assert result.attempts == 1
    assert counter.runs() == 1
    assert sleeps == []
    assert "non-retryable exit code 3" in engine.errors.last.message


def test_retry_condition_allows_listed_codes(engine, counter):
    policy = RetryPolicy(max_retries=2, retry_condition=retry_on_exit_codes(5))
    result = engine.execute(Operation(command=counter(fail_code=5), name="fetch", retry_policy=policy))
    assert result.attempts == 3


def test_stats(engine, counter, py_cmd):
    assert engine.stats() == {'total_attempts': 0, 'succeeded': 0, 'failed': 0}

    engine.execute(Operation(command=counter(succeed_on=2), name="a", retry_policy=RetryPolicy(max_retries=1)))
    engine.execute(Operation(command=py_cmd("raise SystemExit(1)"), name="b",
                             retry_policy=RetryPolicy(max_retries=1)))

    assert engine.stats() == {'total_attempts': 4, 'succeeded': 1, 'failed': 1, 'success_rate': 25}
    engine.reset()
    assert engine.stats()['total_attempts'] == 0


def test_timeouts_are_retried(engine, sleeps, py_cmd):
    op = Operation(command=py_cmd("import time; time.sleep(30)"), name="hang",
                   timeout_seconds=0.3, retry_policy=RetryPolicy(max_retries=1))

    result = engine.execute(op)

    assert result.exit_code == 124
    assert result.attempts == 2
    codes = [r.code for r in engine.errors.records]
    assert codes == [ErrorCode.TIMEOUT, ErrorCode.TIMEOUT, ErrorCode.EXECUTION]


def test_execute_with_validation_retries_until_valid(engine, sleeps, counter, py_cmd):
    validations = []

    def validation():
        validations.append(1)
        return len(validations) >= 2

    op = Operation(command=py_cmd("pass"), name="deploy", validation=validation,
                   retry_policy=RetryPolicy(max_retries=3))

    result = engine.execute_with_validation(op)

    assert result.success
    assert result.attempts == 2
    assert len(validations) == 2
    assert sleeps == [2]


def test_execute_ignores_validation(engine, py_cmd):
    op = Operation(command=py_cmd("pass"), name="deploy", validation=lambda: False)
    assert engine.execute(op).success


def test_retrying_decorator_recovers(sleeps):
    calls = []

    @retrying(RetryPolicy(max_retries=2, base_delay=1), exceptions=(ConnectionError,), sleep=sleeps.append, jitter=False)
    def fetch():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset by peer")
        return "ok"

    assert fetch() == "ok"
    assert sleeps == [1, 2]


def test_retrying_decorator_gives_up(sleeps):
    @retrying(RetryPolicy(max_retries=1), sleep=sleeps.append, jitter=False)
    def broken():
        raise RuntimeError("nope")

    with pytest.raises(RetryError) as excinfo:
        broken()
    assert excinfo.value.attempts == 2
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_retrying_decorator_does_not_catch_other_exceptions(sleeps):
    @retrying(RetryPolicy(max_retries=3), exceptions=(ConnectionError,), sleep=sleeps.append)
    def broken():
        raise KeyError("x")

    with pytest.raises(KeyError):
        broken()
    assert sleeps == []


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_multiplier=0.5)
