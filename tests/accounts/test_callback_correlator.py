"""Tests for OAuth redirect correlation."""

from __future__ import annotations

import asyncio

import pytest

from workspace_auth.accounts.callback import CallbackCorrelator, DeliveryOutcome, FallbackPolicy
from workspace_auth.errors import AuthorizationDeniedError, AuthorizationTimeoutError

pytestmark = pytest.mark.unit


async def test_matching_state_resolves():
    correlator = CallbackCorrelator()
    pending = correlator.start_wait()

    outcome = correlator.deliver(code="abc", state=pending.state)

    assert outcome == DeliveryOutcome(resolved=(pending.state,))
    assert await pending.wait() == "abc"
    assert correlator.pending_count == 0


async def test_states_are_unique_and_urlsafe():
    correlator = CallbackCorrelator()
    states = {correlator.start_wait().state for _ in range(10)}
    assert len(states) == 10
    assert all(len(state) >= 32 for state in states)
    correlator.cancel_all()


async def test_code_without_state_resolves_earliest_only():
    correlator = CallbackCorrelator()
    first = correlator.start_wait()
    second = correlator.start_wait()

    outcome = correlator.deliver(code="abc", state=None)

    assert outcome.resolved == (first.state,)
    assert await first.wait() == "abc"
    assert not second.done
    assert correlator.pending_count == 1
    correlator.cancel_all()


async def test_unmatched_only_prefers_state_match():
    correlator = CallbackCorrelator(fallback=FallbackPolicy.UNMATCHED_ONLY)
    first = correlator.start_wait()
    second = correlator.start_wait()

    correlator.deliver(code="abc", state=second.state)

    assert await second.wait() == "abc"
    assert not first.done
    correlator.cancel_all()


async def test_unmatched_only_ignores_stale_state():
    correlator = CallbackCorrelator(fallback=FallbackPolicy.UNMATCHED_ONLY)
    expired = correlator.start_wait(timeout_seconds=0.01)
    other = correlator.start_wait(timeout_seconds=60)
    with pytest.raises(AuthorizationTimeoutError):
        await expired.wait()

    outcome = correlator.deliver(code="code-for-expired", state=expired.state)

    assert outcome == DeliveryOutcome()
    assert not other.done
    assert correlator.pending_count == 1
    correlator.cancel_all()


async def test_unmatched_only_ignores_unknown_state():
    correlator = CallbackCorrelator()
    pending = correlator.start_wait()

    outcome = correlator.deliver(code="abc", state="not-a-registered-state")

    assert not outcome.matched
    assert not pending.done
    correlator.cancel_all()


async def test_always_policy_resolves_earliest_and_match():
    correlator = CallbackCorrelator(fallback=FallbackPolicy.ALWAYS)
    first = correlator.start_wait()
    second = correlator.start_wait()
    third = correlator.start_wait()

    outcome = correlator.deliver(code="abc", state=second.state)

    assert outcome.resolved == (first.state, second.state)
    assert await first.wait() == "abc"
    assert await second.wait() == "abc"
    assert not third.done
    correlator.cancel_all()


async def test_disabled_policy_ignores_unknown_state():
    correlator = CallbackCorrelator(fallback=FallbackPolicy.DISABLED)
    pending = correlator.start_wait()

    outcome = correlator.deliver(code="abc", state="someone-else")

    assert outcome.matched is False
    assert not pending.done
    correlator.cancel_all()


async def test_error_rejects_matching_entry():
    correlator = CallbackCorrelator()
    pending = correlator.start_wait()
    other = correlator.start_wait()

    outcome = correlator.deliver(error="access_denied", state=pending.state)

    assert outcome.rejected == (pending.state,)
    with pytest.raises(AuthorizationDeniedError, match="access_denied"):
        await pending.wait()
    assert not other.done
    correlator.cancel_all()


async def test_error_without_match_is_ignored():
    correlator = CallbackCorrelator()
    pending = correlator.start_wait()

    outcome = correlator.deliver(error="access_denied", state=None)

    assert outcome.matched is False
    assert not pending.done
    correlator.cancel_all()


async def test_missing_code_and_error_is_noop():
    correlator = CallbackCorrelator()
    pending = correlator.start_wait()
    assert correlator.deliver(state=pending.state).matched is False
    assert not pending.done
    correlator.cancel_all()


async def test_timeout_rejects_and_removes():
    correlator = CallbackCorrelator(timeout_seconds=0.01)
    pending = correlator.start_wait()

    with pytest.raises(AuthorizationTimeoutError):
        await pending.wait()

    assert correlator.pending_count == 0
    assert correlator.deliver(code="late", state=pending.state).matched is False


async def test_wait_for_code():
    correlator = CallbackCorrelator()
    waiter = asyncio.create_task(correlator.wait_for_code())
    await asyncio.sleep(0)

    correlator.deliver(code="xyz")

    assert await waiter == "xyz"


async def test_second_delivery_is_noop():
    correlator = CallbackCorrelator(fallback=FallbackPolicy.DISABLED)
    pending = correlator.start_wait()

    correlator.deliver(code="first", state=pending.state)
    second = correlator.deliver(code="second", state=pending.state)

    assert second.matched is False
    assert await pending.wait() == "first"


async def test_cancelled_waiter_is_not_selected():
    correlator = CallbackCorrelator()
    first = correlator.start_wait()
    second = correlator.start_wait()
    first.future.cancel()

    outcome = correlator.deliver(code="abc")

    assert outcome.resolved == (second.state,)


async def test_cancel_all():
    correlator = CallbackCorrelator()
    pendings = [correlator.start_wait() for _ in range(3)]

    assert correlator.cancel_all() == 3

    for pending in pendings:
        with pytest.raises(AuthorizationDeniedError):
            await pending.wait()
    assert correlator.pending_count == 0


async def test_duplicate_explicit_state_rejected():
    correlator = CallbackCorrelator()
    correlator.start_wait(state="fixed")
    with pytest.raises(ValueError):
        correlator.start_wait(state="fixed")
    correlator.cancel_all()
