"""Correlates OAuth redirects with the tasks waiting for an authorization code.

Each authorization attempt registers a :class:`PendingAuthorization` under a
fresh random ``state`` token; the ``/oauth2callback`` endpoint hands the
redirect parameters to :meth:`CallbackCorrelator.deliver`, which settles the
matching waiter.  Every pending entry reaches exactly one terminal
transition: resolved with a code, rejected by a provider error, or rejected
by its deadline.

Redirects that carry a code but no ``state`` are routed by the configured
:class:`FallbackPolicy`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
from dataclasses import dataclass, field
from enum import StrEnum

from workspace_auth.core.metrics import record_callback_delivery
from workspace_auth.errors import AuthorizationDeniedError, AuthorizationTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_AUTHORIZATION_TIMEOUT_SECONDS = 5 * 60


class FallbackPolicy(StrEnum):
    """How a code redirect without a matching ``state`` is routed."""

    ALWAYS = "always"
    """Resolve the earliest waiter unconditionally, then the ``state`` match too."""

    UNMATCHED_ONLY = "unmatched_only"
    """Resolve the ``state`` match, or the earliest waiter when no ``state`` was sent."""

    DISABLED = "disabled"
    """Only a matching ``state`` resolves a waiter."""


def _generate_state() -> str:
    """Generate a cryptographically random state token."""
    return secrets.token_urlsafe(32)


def _short(state: str | None) -> str:
    return f"{state[:8]}…" if state else "<none>"


@dataclass
class PendingAuthorization:
    """One registered waiter for an authorization code."""

    state: str
    sequence: int
    deadline: float
    future: asyncio.Future[str] = field(repr=False)
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.future.done()

    async def wait(self) -> str:
        """Wait for the code.

        Raises
        ------
        AuthorizationDeniedError
            The redirect carried an ``error`` parameter.
        AuthorizationTimeoutError
            No redirect arrived before the deadline.
        """
        return await self.future


@dataclass(frozen=True)
class DeliveryOutcome:
    """States settled by a single :meth:`CallbackCorrelator.deliver` call."""

    resolved: tuple[str, ...] = ()
    rejected: tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return bool(self.resolved or self.rejected)


class CallbackCorrelator:
    """Registry of pending authorizations keyed by ``state``.

    All methods must be called from the event loop that owns the waiters.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_AUTHORIZATION_TIMEOUT_SECONDS,
        fallback: FallbackPolicy = FallbackPolicy.UNMATCHED_ONLY,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._fallback = fallback
        # dict order is registration order; the fallback relies on it.
        self._pending: dict[str, PendingAuthorization] = {}
        self._sequence = itertools.count()

    @property
    def fallback(self) -> FallbackPolicy:
        return self._fallback

    @property
    def pending_count(self) -> int:
        return sum(1 for pending in self._pending.values() if not pending.done)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def start_wait(
        self,
        *,
        timeout_seconds: float | None = None,
        state: str | None = None,
    ) -> PendingAuthorization:
        """Register a waiter and return it without suspending.

        The caller embeds ``pending.state`` in the authorization URL and then
        awaits :meth:`PendingAuthorization.wait`.
        """
        loop = asyncio.get_running_loop()
        state = state or _generate_state()
        if state in self._pending:
            raise ValueError("an authorization with this state is already pending")

        timeout = self._timeout_seconds if timeout_seconds is None else timeout_seconds
        pending = PendingAuthorization(
            state=state,
            sequence=next(self._sequence),
            deadline=loop.time() + timeout,
            future=loop.create_future(),
        )
        pending.timer = loop.call_later(timeout, self._expire, state)
        # A waiter that gets cancelled must not stay selectable.
        pending.future.add_done_callback(lambda _fut, p=pending: self._forget(p))
        self._pending[state] = pending
        logger.debug("Registered pending authorization %s", _short(state))
        return pending

    async def wait_for_code(self, *, timeout_seconds: float | None = None) -> str:
        """Register a waiter and suspend until it is settled."""
        pending = self.start_wait(timeout_seconds=timeout_seconds)
        return await pending.wait()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(
        self,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
    ) -> DeliveryOutcome:
        """Route one redirect to its waiter(s).

        Never raises; a redirect nobody is waiting for is logged and ignored.
        """
        if error:
            target = self._take(state)
            if target is None:
                record_callback_delivery("unmatched_error")
                logger.warning(
                    "OAuth error %r for state %s with no pending authorization",
                    error,
                    _short(state),
                )
                return DeliveryOutcome()
            target.future.set_exception(
                AuthorizationDeniedError(f"Authorization failed: {error}")
            )
            record_callback_delivery("rejected")
            logger.warning("Authorization %s rejected by provider: %s", _short(state), error)
            return DeliveryOutcome(rejected=(target.state,))

        if not code:
            record_callback_delivery("missing_code")
            logger.warning("OAuth redirect without code or error (state %s)", _short(state))
            return DeliveryOutcome()

        targets: list[PendingAuthorization] = []
        if self._fallback is FallbackPolicy.ALWAYS:
            for candidate in (self._take_earliest(), self._take(state)):
                if candidate is not None:
                    targets.append(candidate)
        elif self._fallback is FallbackPolicy.UNMATCHED_ONLY:
            # A stale or unknown state never falls back to another waiter.
            candidate = self._take_earliest() if state is None else self._take(state)
            if candidate is not None:
                targets.append(candidate)
        else:
            candidate = self._take(state)
            if candidate is not None:
                targets.append(candidate)

        if not targets:
            record_callback_delivery("unmatched")
            logger.warning(
                "OAuth code for state %s matched no pending authorization", _short(state)
            )
            return DeliveryOutcome()

        for target in targets:
            target.future.set_result(code)
            record_callback_delivery("resolved")
            logger.info("Authorization %s received its code", _short(target.state))
        return DeliveryOutcome(resolved=tuple(target.state for target in targets))

    def cancel_all(self) -> int:
        """Reject every pending authorization; returns how many were rejected."""
        count = 0
        for state in list(self._pending):
            pending = self._take(state)
            if pending is None:
                continue
            pending.future.set_exception(
                AuthorizationDeniedError(
                    "Authorization cancelled: server is shutting down",
                    code="AUTH_CANCELLED",
                )
            )
            count += 1
        if count:
            logger.info("Cancelled %d pending authorization(s)", count)
        return count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _take(self, state: str | None) -> PendingAuthorization | None:
        """Remove and return the live entry for *state*, if any."""
        if state is None:
            return None
        pending = self._pending.pop(state, None)
        if pending is None or pending.done:
            return None
        if pending.timer is not None:
            pending.timer.cancel()
        return pending

    def _take_earliest(self) -> PendingAuthorization | None:
        for state, pending in self._pending.items():
            if not pending.done:
                return self._take(state)
        return None

    def _forget(self, pending: PendingAuthorization) -> None:
        # Entries nobody awaited (e.g. an unused status URL) still time out quietly.
        if not pending.future.cancelled():
            pending.future.exception()
        if self._pending.get(pending.state) is pending:
            del self._pending[pending.state]
        if pending.timer is not None:
            pending.timer.cancel()

    def _expire(self, state: str) -> None:
        pending = self._take(state)
        if pending is None:
            return
        pending.future.set_exception(
            AuthorizationTimeoutError("Authorization timed out waiting for the OAuth redirect")
        )
        record_callback_delivery("timeout")
        logger.warning("Authorization %s timed out", _short(state))
