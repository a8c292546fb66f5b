"""
One-time setup: hash the admin password, generate the session secret, write
the credential file (mode 600) and seed the node collection.

    registry-setup
    echo "$PASSWORD" | registry-setup --password-stdin --port 3000
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import secrets
import sys
from pathlib import Path

from registry.config import get_settings
from registry.credentials import hash_password
from registry.models import NodeRecord
from registry.store import NodeStore

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
BCRYPT_ROUNDS = 12

SEED_NODES = [
    NodeRecord(
        id="IRIDIUM-03", type="repeater",
        location="Ridge Line, Weatherproof Box",
        hardware="RAK WisBlock RAK19007 + RAK4631 (nRF52840)",
        notes="Long-range repeater on high ground. Power saving enabled. Solar + LiPo. ~3 mile coverage east.",
    ),
    NodeRecord(
        id="IRIDIUM-04", type="repeater",
        location="Barn, South Wall",
        hardware="LILYGO T-Beam Supreme (ESP32-S3 + SX1262)",
        notes="Repeater with integrated GPS. 18650 battery. Bridges gap to eastern clients. LOS to IRIDIUM-01.",
    ),
    NodeRecord(
        id="IRIDIUM-05", type="repeater",
        location="Water Tower, Pole Mount",
        hardware="Heltec Wireless Tracker (ESP32-S3 + SX1262)",
        notes="Elevated repeater. Compact form. GPS beacon enabled. Mains powered via weatherproof junction box.",
    ),
    NodeRecord(
        id="IRIDIUM-06", type="client",
        location="Residence, Desk",
        hardware="LILYGO T-Deck (ESP32-S3 + SX1262)",
        notes="Standalone client. QWERTY keyboard + 2.8\" IPS screen. No phone app required. Primary comms terminal.",
    ),
    NodeRecord(
        id="IRIDIUM-07", type="client",
        location="Field Kit, Portable",
        hardware="LILYGO T-Echo (nRF52840 + SX1262)",
        notes="Handheld client. E-Ink display, GPS, NFC. Multi-day battery life. BLE pairing to MeshCore app.",
    ),
    NodeRecord(
        id="IRIDIUM-08", type="client",
        location="Vehicle, Dash Mount",
        hardware="Seeed Studio T1000-E (nRF52840 + SX1262)",
        notes="Compact tracker/client. Built-in GPS. Used for mobile node tracking. Rechargeable LiPo.",
    ),
]


def write_credentials(path: Path, password: str, port: int, rounds: int = BCRYPT_ROUNDS) -> None:
    """Write the credential file readable only by the owning user."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    config = {
        "port": port,
        "passwordHash": hash_password(password, rounds=rounds),
        "sessionSecret": secrets.token_hex(48),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(json.dumps(config, indent=2))
    # O_CREAT mode does not apply to an existing file
    os.chmod(path, 0o600)


def seed_nodes(store: NodeStore) -> bool:
    """Seed example nodes unless the collection file already exists."""
    if store.path.exists():
        return False
    for node in SEED_NODES:
        store.create(node)
    return True


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\r\n")
    return getpass.getpass("Admin password: ")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Node registry setup")
    parser.add_argument("--port", type=int, default=None, help="Port to run on [3000]")
    parser.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the admin password from the first line of stdin",
    )
    parser.add_argument("--no-seed", action="store_true", help="Do not seed example nodes")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    settings = get_settings()

    port = args.port
    if port is None:
        answer = "" if args.password_stdin else input(f"Port to run on [{settings.port}]: ").strip()
        if answer and not answer.isdigit():
            parser.error(f"invalid port: {answer}")
        port = int(answer) if answer else settings.port

    password = _read_password(args.password_stdin)

    logger.info("Hashing password...")
    try:
        write_credentials(settings.credential_path, password, port, rounds=BCRYPT_ROUNDS)
    except ValueError as exc:
        logger.error("%s", exc)
        return 1
    logger.info("  %s written (mode 600)", settings.credential_path.name)

    if not args.no_seed:
        if seed_nodes(NodeStore(settings.data_path)):
            logger.info("  %s seeded with example nodes", settings.data_file)
        else:
            logger.info("  %s already exists, skipping seed", settings.data_file)

    logger.info("Setup complete. Start the server with: registry-serve")
    return 0


if __name__ == "__main__":
    sys.exit(main())
