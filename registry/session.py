"""
Session gate: login, session issue/validation and logout.

Tokens are itsdangerous-signed session ids. The session table itself lives
in memory so logout can destroy a session before its absolute expiry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from starlette.concurrency import run_in_threadpool

from registry.credentials import CredentialStore
from registry.errors import InvalidCredential, RateLimited
from registry.models import Session
from registry.rate_limit import LoginRateLimiter

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionGate:
    """Issues and validates authenticated sessions."""

    def __init__(
        self,
        credentials: CredentialStore,
        limiter: LoginRateLimiter,
        max_age_seconds: int = 28800,
        failure_delay_seconds: float = 0.5,
        bind_client: bool = False,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._credentials = credentials
        self._limiter = limiter
        self._max_age = timedelta(seconds=max_age_seconds)
        self._failure_delay = failure_delay_seconds
        self._bind_client = bind_client
        self._now = now
        self._serializer = URLSafeTimedSerializer(
            credentials.session_secret, salt="registry-session"
        )
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    @property
    def max_age_seconds(self) -> int:
        return int(self._max_age.total_seconds())

    async def login(self, client_id: str, password: str) -> str:
        """Authenticate *client_id* and return a signed session token.

        Raises:
            RateLimited: the client is locked out, or this failure locked it out
            InvalidCredential: wrong password
        """
        admission = self._limiter.try_acquire(client_id)
        if not admission.allowed:
            logger.warning("Rate limited login attempt from %s", client_id)
            raise RateLimited(admission.retry_after_seconds)

        # bcrypt is deliberately slow; keep it off the event loop
        try:
            matched = await run_in_threadpool(self._credentials.verify, password)
        except BaseException:
            self._limiter.release(client_id)
            raise

        if not matched:
            result = self._limiter.record_failure(client_id)
            logger.info("Failed login attempt from %s", client_id)
            # No lock is held here
            await asyncio.sleep(self._failure_delay)
            if result.locked_out:
                minutes = result.retry_after_seconds // 60
                raise RateLimited(
                    result.retry_after_seconds,
                    message=f"Too many attempts. Locked out for {minutes} minutes",
                )
            raise InvalidCredential(result.remaining_attempts)

        self._limiter.record_success(client_id)
        logger.info("Successful login from %s", client_id)
        return self._issue(client_id)

    def _issue(self, client_id: str) -> str:
        issued_at = self._now()
        session = Session(
            session_id=uuid.uuid4().hex,
            client_binding=client_id,
            authenticated=True,
            issued_at=issued_at,
            expires_at=issued_at + self._max_age,
        )
        with self._lock:
            self._cleanup_expired(issued_at)
            self._sessions[session.session_id] = session
        return self._serializer.dumps({"sid": session.session_id})

    def _cleanup_expired(self, now: datetime) -> int:
        """Drop expired sessions. Caller holds the lock."""
        expired = [
            sid for sid, session in self._sessions.items()
            if not session.is_active(now)
        ]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def cleanup_expired(self) -> int:
        """Remove expired sessions. Returns count of removed sessions."""
        with self._lock:
            return self._cleanup_expired(self._now())

    def _session_id(self, token: str | None) -> str | None:
        if not token:
            return None
        try:
            data = self._serializer.loads(token, max_age=self.max_age_seconds)
            return data["sid"]
        except SignatureExpired:
            logger.info("Session token expired")
            return None
        except BadSignature:
            logger.warning("Invalid session token signature")
            return None
        except (KeyError, TypeError) as exc:
            logger.warning("Malformed session token: %s", exc)
            return None

    def session(self, token: str | None) -> Session | None:
        """Return the live session behind *token*, or None."""
        session_id = self._session_id(token)
        if session_id is None:
            return None

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if not session.is_active(self._now()):
                del self._sessions[session_id]
                return None
            return session

    def validate(self, token: str | None, client_id: str | None = None) -> bool:
        """True while the session is unexpired and authenticated."""
        session = self.session(token)
        if session is None:
            return False
        if self._bind_client and client_id is not None and client_id != session.client_binding:
            logger.warning(
                "Session presented from %s, bound to %s",
                client_id, session.client_binding,
            )
            return False
        return True

    def logout(self, token: str | None) -> None:
        """Destroy the session behind *token*. Unknown tokens are ignored."""
        session_id = self._session_id(token)
        if session_id is None:
            return
        with self._lock:
            self._sessions.pop(session_id, None)

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)
