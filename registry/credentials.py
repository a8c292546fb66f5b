"""
Credential store: the single admin password hash and the session secret.
"""

from __future__ import annotations

import json
import logging
import stat
from pathlib import Path

import bcrypt

from registry.errors import CredentialError

logger = logging.getLogger(__name__)


class CredentialStore:
    """Holds one bcrypt password hash and one session-signing secret.

    Loaded once at startup and read-only afterwards.
    """

    def __init__(self, password_hash: str, session_secret: str, port: int | None = None) -> None:
        if not password_hash or not session_secret:
            raise CredentialError("passwordHash and sessionSecret are required")
        self._password_hash = password_hash.encode("utf-8")
        self._session_secret = session_secret
        self.port = port

    @classmethod
    def from_file(cls, path: Path) -> CredentialStore:
        """Load credentials written by the provisioning tool."""
        if not path.exists():
            raise CredentialError(
                f"{path.name} not found. Run registry-setup first."
            )

        mode = stat.S_IMODE(path.stat().st_mode)
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            logger.warning(
                "Credential file %s is accessible by group/others (mode %o)",
                path, mode,
            )

        try:
            with open(path, encoding="utf-8") as f:
                data = json.loads(f.read())
            store = cls(
                password_hash=data["passwordHash"],
                session_secret=data["sessionSecret"],
                port=data.get("port"),
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            raise CredentialError(f"Failed to load {path.name}: {exc}") from exc

        logger.info("Credentials loaded from %s", path)
        return store

    @property
    def session_secret(self) -> str:
        return self._session_secret

    def verify(self, password: str) -> bool:
        """Constant-time bcrypt comparison against the stored hash."""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), self._password_hash)
        except ValueError:
            # Over-long password or corrupt stored hash
            logger.warning("bcrypt rejected password comparison")
            return False


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash *password* with a fresh bcrypt salt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")
