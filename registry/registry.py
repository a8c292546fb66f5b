"""
Registry facade: the only component that talks to the session gate and the
node store. The HTTP layer calls into this and nothing else.
"""

from __future__ import annotations

import logging
from typing import Any

from registry.config import Settings
from registry.credentials import CredentialStore
from registry.errors import Unauthorized, ValidationError
from registry.models import NodeRecord, parse_new_node, parse_node_update
from registry.rate_limit import LoginRateLimiter
from registry.session import SessionGate
from registry.store import NodeStore

logger = logging.getLogger(__name__)


class Registry:
    """Composes login/logout and node CRUD behind one authorization gate."""

    def __init__(self, gate: SessionGate, store: NodeStore) -> None:
        self._gate = gate
        self._store = store

    @property
    def gate(self) -> SessionGate:
        return self._gate

    # ---------- Auth ----------

    async def login(self, client_id: str, password: str | None) -> str:
        """Return a session token, or raise a RegistryError."""
        if not password:
            raise ValidationError("Password required", fields={"password": "required"})
        return await self._gate.login(client_id, password)

    def logout(self, token: str | None) -> None:
        self._gate.logout(token)

    def auth_status(self, token: str | None) -> bool:
        return self._gate.validate(token)

    def _require_session(self, token: str | None, client_id: str | None) -> None:
        if not self._gate.validate(token, client_id):
            raise Unauthorized()

    # ---------- Nodes ----------

    def list_nodes(self) -> list[NodeRecord]:
        return self._store.list()

    def create_node(
        self, token: str | None, payload: Any, client_id: str | None = None
    ) -> NodeRecord:
        self._require_session(token, client_id)
        node = self._store.create(parse_new_node(payload))
        logger.info("Created node %s", node.id)
        return node

    def update_node(
        self, token: str | None, node_id: str, payload: Any, client_id: str | None = None
    ) -> NodeRecord:
        self._require_session(token, client_id)
        node = self._store.update(node_id, parse_node_update(node_id, payload))
        logger.info("Updated node %s", node_id)
        return node

    def delete_node(self, token: str | None, node_id: str, client_id: str | None = None) -> None:
        self._require_session(token, client_id)
        self._store.delete(node_id)
        logger.info("Deleted node %s", node_id)


def build_registry(settings: Settings) -> Registry:
    """Wire a registry from settings. Raises CredentialError if unprovisioned."""
    credentials = CredentialStore.from_file(settings.credential_path)
    limiter = LoginRateLimiter(
        max_failures=settings.max_login_failures,
        lockout_seconds=settings.lockout_seconds,
    )
    gate = SessionGate(
        credentials,
        limiter,
        max_age_seconds=settings.session_max_age,
        failure_delay_seconds=settings.failed_login_delay_seconds,
        bind_client=settings.session_bind_client,
    )
    return Registry(gate, NodeStore(settings.data_path))
