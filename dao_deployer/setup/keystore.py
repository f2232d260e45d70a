#!/usr/bin/env python3
"""
Ephemeral key store.

One JSON record per wallet at ``<dir>/<lowercase address without 0x>.json``:

    {"id", "address", "networkName", "createdAt", "privateKey", "securityNote"}

Records are written atomically (temp file, fsync, os.replace) with mode 0600.
Secrets are returned only by ``load_secret``; listings never carry them.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_utils import to_checksum_address

from dao_deployer.errors import CorruptRecordError, NotFoundError, StorageError
from dao_deployer.helpers.amounts import address_file_stem, normalize_address

logger = logging.getLogger(__name__)

SECURITY_NOTE = (
    "Ephemeral funding key. Sweep remaining funds to a secure address and delete "
    "this file once the deployment is complete."
)
_TMP_PREFIX = "ephemeral_"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_privkey_hex(pk: str) -> str:
    if not isinstance(pk, str):
        raise ValueError("private key must be a hex string")
    pk = pk.strip()
    if pk.startswith("0x"):
        pk = pk[2:]
    if len(pk) != 64:
        raise ValueError("private key hex must be 64 characters (32 bytes)")
    int(pk, 16)
    return "0x" + pk


def write_json_atomic(path: Path, data: dict[str, Any], mode: int = 0o600) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=_TMP_PREFIX, suffix=".tmp", dir=str(path.parent))
    try:
        os.fchmod(tmp_fd, mode)
        with os.fdopen(tmp_fd, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def read_json(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return json.load(f)


@dataclass(frozen=True)
class EphemeralWallet:
    address: str
    network_name: str
    created_at: datetime
    key_file: Path
    wallet_id: str = ""

    def age_hours(self, now: datetime | None = None) -> float:
        delta = (now or _utc_now()) - self.created_at
        return round(delta.total_seconds() / 3600, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.wallet_id,
            "address": self.address,
            "networkName": self.network_name,
            "createdAt": self.created_at.isoformat(),
            "ageHours": self.age_hours(),
            "keyFile": str(self.key_file),
        }


class EphemeralKeyStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()

    def _path_for(self, address: str) -> Path:
        try:
            stem = address_file_stem(address)
        except ValueError as e:
            raise NotFoundError(f"Invalid wallet address: {address}", address=address) from e
        return self.directory / f"{stem}.json"

    def _ensure_dir(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            os.chmod(self.directory, 0o700)
        except OSError as e:
            raise StorageError(f"Cannot create wallet directory {self.directory}: {e}", path=str(self.directory)) from e

    def generate(self, network_name: str) -> EphemeralWallet:
        """Create and persist a fresh key for ``network_name``."""
        self._ensure_dir()
        acct = Account.create()
        address = to_checksum_address(acct.address)
        created_at = _utc_now()
        record = {
            "id": str(uuid.uuid4()),
            "address": address,
            "networkName": network_name,
            "createdAt": created_at.isoformat(),
            "privateKey": "0x" + bytes(acct.key).hex(),
            "securityNote": SECURITY_NOTE,
        }
        path = self._path_for(address)
        try:
            write_json_atomic(path, record)
        except OSError as e:
            raise StorageError(f"Failed to write key file {path}: {e}", path=str(path), address=address) from e
        logger.info("Generated ephemeral wallet %s for %s", address, network_name)
        return EphemeralWallet(address, network_name, created_at, path, record["id"])

    def list(self) -> tuple[EphemeralWallet, ...]:
        """All readable records, newest first. Corrupt records are skipped."""
        if not self.directory.exists():
            return ()
        wallets = []
        for path in self.directory.glob("*.json"):
            try:
                wallets.append(self._wallet_from_record(path, read_json(path)))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable wallet record %s: %s", path.name, e)
        wallets.sort(key=lambda w: w.created_at, reverse=True)
        return tuple(wallets)

    def find(self, address: str) -> EphemeralWallet | None:
        path = self._path_for(address)
        if not path.exists():
            return None
        try:
            return self._wallet_from_record(path, read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CorruptRecordError(f"Wallet record {path.name} is unreadable: {e}", address=address) from e

    def load_secret(self, address: str, network_name: str) -> bytes:
        """Private key bytes for ``address`` on ``network_name``.

        Raises:
            NotFoundError: no record for that address and network.
            CorruptRecordError: the record is unreadable, or its key does not
                derive the recorded address.
        """
        record = self._read_record(address, network_name)
        try:
            key_hex = _normalize_privkey_hex(record["privateKey"])
            derived = Account.from_key(key_hex).address
        except (KeyError, ValueError, TypeError) as e:
            raise CorruptRecordError(f"Wallet record for {address} has no valid key", address=address) from e
        if derived.lower() != str(record.get("address", "")).lower() or derived.lower() != address.lower():
            raise CorruptRecordError(
                f"Key in record for {address} derives {derived}", address=address, derived=derived
            )
        return bytes.fromhex(key_hex[2:])

    def delete(self, address: str, network_name: str) -> bool:
        """Remove the record. False when there is nothing to delete."""
        try:
            self._read_record(address, network_name)
        except NotFoundError:
            return False
        path = self._path_for(address)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete key file {path}: {e}", path=str(path)) from e
        logger.info("Deleted ephemeral wallet %s (%s)", normalize_address(address), network_name)
        return True

    def _read_record(self, address: str, network_name: str) -> dict[str, Any]:
        path = self._path_for(address)
        try:
            record = read_json(path)
        except FileNotFoundError:
            raise NotFoundError(
                f"No ephemeral wallet {address} on {network_name}", address=address, network=network_name
            )
        except (OSError, ValueError) as e:
            raise CorruptRecordError(f"Wallet record {path.name} is unreadable: {e}", address=address) from e
        if not isinstance(record, dict):
            raise CorruptRecordError(f"Wallet record {path.name} is not an object", address=address)
        if str(record.get("networkName", "")).lower() != str(network_name).lower():
            raise NotFoundError(
                f"No ephemeral wallet {address} on {network_name}",
                address=address,
                network=network_name,
                recorded_network=record.get("networkName"),
            )
        return record

    @staticmethod
    def _wallet_from_record(path: Path, record: dict[str, Any]) -> EphemeralWallet:
        created_at = datetime.fromisoformat(record["createdAt"].replace("Z", "+00:00"))
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return EphemeralWallet(
            address=normalize_address(record["address"]),
            network_name=str(record["networkName"]),
            created_at=created_at,
            key_file=path,
            wallet_id=str(record.get("id", "")),
        )
