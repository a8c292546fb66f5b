"""
JSON-file node store.

The whole collection is the unit of persistence: each mutation reads the
file, applies one change and writes the full collection back. Mutations are
serialized through a per-instance lock; reads take no lock and see whatever
complete file is on disk at the time.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from registry.errors import Conflict, NotFound, StorageFailure
from registry.models import NodeRecord

logger = logging.getLogger(__name__)


class NodeStore:
    """Authoritative node collection backed by one JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[NodeRecord]:
        if not self._path.exists():
            return []
        try:
            with open(self._path, encoding="utf-8") as f:
                raw = json.loads(f.read())
            return [NodeRecord.model_validate(item) for item in raw]
        except (OSError, json.JSONDecodeError, TypeError, PydanticValidationError) as exc:
            logger.exception("Failed to read node collection %s", self._path)
            raise StorageFailure() from exc

    def _write(self, nodes: list[NodeRecord]) -> None:
        """Replace the collection file atomically (temp file then rename)."""
        payload = json.dumps([node.model_dump() for node in nodes], indent=2)
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            logger.exception("Failed to write node collection %s", self._path)
            raise StorageFailure() from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Could not remove temp file %s", tmp_name)

    def list(self) -> list[NodeRecord]:
        """Snapshot of every node, in insertion order."""
        return self._load()

    def get(self, node_id: str) -> NodeRecord:
        for node in self._load():
            if node.id == node_id:
                return node
        raise NotFound("Node not found")

    def create(self, node: NodeRecord) -> NodeRecord:
        """Append *node*. Raises Conflict if its id is taken."""
        with self._write_lock:
            nodes = self._load()
            if any(existing.id == node.id for existing in nodes):
                raise Conflict("Node ID already exists")
            nodes.append(node)
            self._write(nodes)
        return node

    def update(self, node_id: str, node: NodeRecord) -> NodeRecord:
        """Replace the record for *node_id* wholesale. Never creates."""
        replacement = node.model_copy(update={"id": node_id})
        with self._write_lock:
            nodes = self._load()
            for idx, existing in enumerate(nodes):
                if existing.id == node_id:
                    nodes[idx] = replacement
                    break
            else:
                raise NotFound("Node not found")
            self._write(nodes)
        return replacement

    def delete(self, node_id: str) -> None:
        with self._write_lock:
            nodes = self._load()
            remaining = [node for node in nodes if node.id != node_id]
            if len(remaining) == len(nodes):
                raise NotFound("Node not found")
            self._write(remaining)
