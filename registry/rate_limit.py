"""
In-memory rate limiter for the login endpoint.
Tracks consecutive failed attempts per client and enforces a lockout window
after the threshold is reached.

Expiry is lazy: records are only dropped when looked up after their window
has passed. Nothing purges clients that never come back, so hostile traffic
from many distinct origins grows the map without bound.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from starlette.requests import Request

logger = logging.getLogger(__name__)


@dataclass
class AttemptRecord:
    """Failure state for a single client.

    ``in_flight`` counts logins admitted by ``try_acquire`` whose password
    comparison has not finished yet.
    """

    client_id: str
    failure_count: int = 0
    window_expires_at: float = 0.0
    in_flight: int = 0


@dataclass(frozen=True)
class CheckResult:
    allowed: bool
    retry_after_seconds: int = 0


@dataclass(frozen=True)
class FailureResult:
    remaining_attempts: int
    locked_out: bool
    retry_after_seconds: int = 0


class AttemptStore(Protocol):
    """Storage for attempt records.

    The limiter serializes every read-modify-write itself, so implementations
    only need per-call consistency.
    """

    def get(self, client_id: str) -> AttemptRecord | None: ...

    def save(self, record: AttemptRecord) -> None: ...

    def delete(self, client_id: str) -> None: ...

    def __len__(self) -> int: ...


class InMemoryAttemptStore:
    """Process-local attempt store. Starts empty; lives as long as the process."""

    def __init__(self) -> None:
        self._records: dict[str, AttemptRecord] = {}

    def get(self, client_id: str) -> AttemptRecord | None:
        return self._records.get(client_id)

    def save(self, record: AttemptRecord) -> None:
        self._records[record.client_id] = record

    def delete(self, client_id: str) -> None:
        self._records.pop(client_id, None)

    def __len__(self) -> int:
        return len(self._records)


class LoginRateLimiter:
    """Locks a client out after too many consecutive failed logins.

    ``try_acquire`` reserves a comparison slot under the lock, so failures
    already counted plus comparisons still pending never exceed
    ``max_failures`` within one window.
    """

    def __init__(
        self,
        max_failures: int = 4,
        lockout_seconds: int = 300,
        store: AttemptStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_failures = max_failures
        self._lockout_seconds = lockout_seconds
        self._store = store if store is not None else InMemoryAttemptStore()
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def max_failures(self) -> int:
        return self._max_failures

    def _live_record(self, client_id: str, now: float) -> AttemptRecord | None:
        """Return the client's record, resetting it if its window has passed."""
        record = self._store.get(client_id)
        if record is None:
            return None
        if now >= record.window_expires_at:
            if not record.in_flight:
                self._store.delete(client_id)
                return None
            # Pending comparisons keep their slots; the failures are forgotten
            record.failure_count = 0
            record.window_expires_at = now + self._lockout_seconds
        return record

    def _release(self, record: AttemptRecord) -> None:
        if record.in_flight > 0:
            record.in_flight -= 1

    def check(self, client_id: str) -> CheckResult:
        """Report whether *client_id* is outside a lockout right now."""
        with self._lock:
            now = self._clock()
            record = self._live_record(client_id, now)
            if record is None or record.failure_count < self._max_failures:
                return CheckResult(allowed=True)
            retry_after = math.ceil(record.window_expires_at - now)
            return CheckResult(allowed=False, retry_after_seconds=retry_after)

    def try_acquire(self, client_id: str) -> CheckResult:
        """Admit one login attempt, reserving a slot until its outcome is recorded.

        Refused while locked out, and also while every remaining attempt is
        already taken by a pending comparison. The caller must follow an
        admitted attempt with ``record_failure``, ``record_success`` or
        ``release``.
        """
        with self._lock:
            now = self._clock()
            record = self._live_record(client_id, now)
            if record is None:
                record = AttemptRecord(
                    client_id=client_id,
                    window_expires_at=now + self._lockout_seconds,
                )

            if record.failure_count >= self._max_failures:
                retry_after = math.ceil(record.window_expires_at - now)
                return CheckResult(allowed=False, retry_after_seconds=retry_after)
            if record.failure_count + record.in_flight >= self._max_failures:
                return CheckResult(allowed=False, retry_after_seconds=1)

            record.in_flight += 1
            self._store.save(record)
            return CheckResult(allowed=True)

    def release(self, client_id: str) -> None:
        """Give back an admitted slot without counting an outcome."""
        with self._lock:
            record = self._live_record(client_id, self._clock())
            if record is None:
                return
            self._release(record)
            if not record.in_flight and not record.failure_count:
                self._store.delete(client_id)
            else:
                self._store.save(record)

    def record_failure(self, client_id: str) -> FailureResult:
        """Count a failed login and release its slot if it held one.

        A failure after the previous window has expired starts a fresh window
        with a count of one. The failure that reaches the threshold restarts
        the window so the lockout lasts the full period from that failure.
        """
        with self._lock:
            now = self._clock()
            record = self._live_record(client_id, now)
            if record is None:
                record = AttemptRecord(client_id=client_id)
            self._release(record)

            if record.failure_count == 0:
                record.window_expires_at = now + self._lockout_seconds
            record.failure_count += 1

            locked_out = record.failure_count >= self._max_failures
            if locked_out:
                record.window_expires_at = now + self._lockout_seconds
            self._store.save(record)
            failure_count = record.failure_count

        if locked_out:
            logger.warning(
                "Login rate-limit: %s locked out for %ds after %d failures",
                client_id, self._lockout_seconds, failure_count,
            )
            return FailureResult(
                remaining_attempts=0,
                locked_out=True,
                retry_after_seconds=self._lockout_seconds,
            )
        return FailureResult(
            remaining_attempts=self._max_failures - failure_count,
            locked_out=False,
        )

    def record_success(self, client_id: str) -> None:
        """Clear failures on successful login, keeping other pending slots."""
        with self._lock:
            record = self._store.get(client_id)
            if record is None:
                return
            self._release(record)
            if record.in_flight:
                record.failure_count = 0
                self._store.save(record)
            else:
                self._store.delete(client_id)

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._store)


def resolve_client_id(request: Request, trust_proxy_headers: bool) -> str:
    """Derive the rate-limit key for a request.

    With proxy trust enabled, ``CF-Connecting-IP`` wins over the first
    ``X-Forwarded-For`` hop, which wins over the peer address. Only enable
    it behind a proxy chain that overwrites these headers, otherwise clients
    can pick their own identity and bypass the lockout.
    """
    if trust_proxy_headers:
        cf_ip = request.headers.get("cf-connecting-ip", "").strip()
        if cf_ip:
            return cf_ip
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"
