"""
Transaction signers.

Deployment transactions are signed by an external device (hardware wallet)
implementing ``Signer``; its UserRejectedError / DeviceUnavailableError pass
through unchanged. ``LocalKeySigner`` signs with an in-memory ephemeral key
and is only used to sweep ephemeral wallets.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from eth_account import Account

if TYPE_CHECKING:
    from dao_deployer.helpers.transactions import UnsignedTransaction


class Signer(Protocol):
    def address(self) -> str: ...

    def sign(self, tx: "UnsignedTransaction") -> bytes:
        """Return the raw signed transaction bytes ready for broadcast."""
        ...


class LocalKeySigner:
    def __init__(self, private_key: bytes):
        self._account = Account.from_key(private_key)

    def address(self) -> str:
        return self._account.address

    def sign(self, tx: "UnsignedTransaction") -> bytes:
        if tx.nonce is None:
            raise ValueError("Local signing requires an explicit nonce")
        signed = self._account.sign_transaction(tx.to_tx_params())
        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
        return bytes(raw)

    def __repr__(self) -> str:
        return f"LocalKeySigner({self._account.address})"
