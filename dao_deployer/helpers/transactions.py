"""
Unsigned and signed transaction records.

Public API
----------
UnsignedTransaction
    Immutable record handed to a Signer. ``chain_id`` is always set.
build_deployment(bytecode, constructor_args_encoded, sender, network, gas_estimate)
    Contract creation (``to`` is None, data = bytecode ++ encoded args).
build_call(target, call_data, sender, network, value, gas_estimate)
    Call or plain value transfer to ``target``.
format_transaction_summary(tx, network, description=None)
    Multi-line human-readable summary for review before signing.
decode_signed_transaction(raw)
    Sender, nonce, chain id and hash of a transaction signed elsewhere.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import rlp
from eth_account import Account
from eth_utils import big_endian_to_int, keccak, to_bytes, to_hex
from rlp.exceptions import RLPException

from dao_deployer.config.network import ResolvedNetwork
from dao_deployer.errors import InvalidConfigError, MissingBytecodeError
from dao_deployer.helpers.amounts import UINT256_MAX, format_display_amount, normalize_address
from dao_deployer.helpers.gas import GasEstimate

__all__ = [
    "UnsignedTransaction",
    "SignedTransactionInfo",
    "build_deployment",
    "build_call",
    "decode_signed_transaction",
    "format_transaction_summary",
]


@dataclass(frozen=True)
class UnsignedTransaction:
    sender: str
    to: Optional[str]
    data: bytes
    value: int
    gas_limit: int
    chain_id: int
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    nonce: Optional[int] = None

    @property
    def is_deployment(self) -> bool:
        return self.to is None

    @property
    def max_cost_wei(self) -> int:
        price = self.gas_price if self.gas_price is not None else self.max_fee_per_gas
        return self.gas_limit * int(price or 0) + self.value

    def with_nonce(self, nonce: int) -> "UnsignedTransaction":
        return UnsignedTransaction(
            sender=self.sender,
            to=self.to,
            data=self.data,
            value=self.value,
            gas_limit=self.gas_limit,
            chain_id=self.chain_id,
            gas_price=self.gas_price,
            max_fee_per_gas=self.max_fee_per_gas,
            max_priority_fee_per_gas=self.max_priority_fee_per_gas,
            nonce=nonce,
        )

    def to_tx_params(self) -> dict[str, Any]:
        """web3 / eth_account transaction dict."""
        tx: dict[str, Any] = {
            "from": self.sender,
            "value": self.value,
            "data": to_hex(self.data) if self.data else "0x",
            "gas": self.gas_limit,
            "chainId": self.chain_id,
        }
        if self.to is not None:
            tx["to"] = self.to
        if self.gas_price is not None:
            tx["gasPrice"] = self.gas_price
        else:
            tx["maxFeePerGas"] = self.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
            tx["type"] = 2
        if self.nonce is not None:
            tx["nonce"] = self.nonce
        return tx

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "from": self.sender,
            "to": self.to,
            "data": to_hex(self.data) if self.data else "0x",
            "value": str(self.value),
            "gasLimit": str(self.gas_limit),
            "chainId": self.chain_id,
        }
        if self.gas_price is not None:
            out["gasPrice"] = str(self.gas_price)
        else:
            out["maxFeePerGas"] = str(self.max_fee_per_gas)
            out["maxPriorityFeePerGas"] = str(self.max_priority_fee_per_gas)
        if self.nonce is not None:
            out["nonce"] = self.nonce
        return out


def _as_bytes(value: bytes | str | None) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value.strip()
    if text in ("", "0x"):
        return b""
    return to_bytes(hexstr=text)


def _fee_fields(gas_estimate: GasEstimate) -> dict[str, Any]:
    if gas_estimate.fee_mode == "eip1559":
        return {
            "max_fee_per_gas": gas_estimate.max_fee_per_gas,
            "max_priority_fee_per_gas": gas_estimate.max_priority_fee_per_gas,
        }
    return {"gas_price": gas_estimate.gas_price}


def build_deployment(
    bytecode: bytes | str,
    constructor_args_encoded: bytes | str | None,
    sender: str,
    network: ResolvedNetwork,
    gas_estimate: GasEstimate,
    nonce: Optional[int] = None,
) -> UnsignedTransaction:
    code = _as_bytes(bytecode)
    if not code:
        raise MissingBytecodeError("Cannot build a deployment without bytecode", network=network.key)
    return UnsignedTransaction(
        sender=normalize_address(sender),
        to=None,
        data=code + _as_bytes(constructor_args_encoded),
        value=0,
        gas_limit=gas_estimate.adjusted_limit,
        chain_id=network.chain_id,
        nonce=nonce,
        **_fee_fields(gas_estimate),
    )


def build_call(
    target: str,
    call_data: bytes | str | None,
    sender: str,
    network: ResolvedNetwork,
    value: int,
    gas_estimate: GasEstimate,
    nonce: Optional[int] = None,
) -> UnsignedTransaction:
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"Invalid transaction value: {value}")
    return UnsignedTransaction(
        sender=normalize_address(sender),
        to=normalize_address(target),
        data=_as_bytes(call_data),
        value=int(value),
        gas_limit=gas_estimate.adjusted_limit,
        chain_id=network.chain_id,
        nonce=nonce,
        **_fee_fields(gas_estimate),
    )


def format_transaction_summary(
    tx: UnsignedTransaction, network: ResolvedNetwork, description: Optional[str] = None
) -> str:
    decimals = network.native_currency_decimals
    symbol = network.currency_symbol
    lines = [f"Transaction on {network.name} (chain {tx.chain_id})"]
    if description:
        lines.append(f"  {description}")
    lines.append(f"  From:      {tx.sender}")
    lines.append(f"  To:        {tx.to or 'contract creation'}")
    lines.append(f"  Value:     {format_display_amount(tx.value, decimals, symbol)}")
    lines.append(f"  Data:      {len(tx.data)} bytes")
    lines.append(f"  Gas limit: {tx.gas_limit:,}")
    if tx.gas_price is not None:
        lines.append(f"  Gas price: {format_display_amount(tx.gas_price, 9)} gwei")
    else:
        lines.append(f"  Max fee:   {format_display_amount(tx.max_fee_per_gas or 0, 9)} gwei")
        lines.append(f"  Priority:  {format_display_amount(tx.max_priority_fee_per_gas or 0, 9)} gwei")
    lines.append(f"  Max cost:  {format_display_amount(tx.max_cost_wei, decimals, symbol)}")
    return "\n".join(lines)


@dataclass(frozen=True)
class SignedTransactionInfo:
    """Fields read back from a raw signed transaction before broadcast."""

    raw: bytes
    tx_hash: str
    sender: str
    nonce: int
    chain_id: Optional[int]
    tx_type: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionHash": self.tx_hash,
            "from": self.sender,
            "nonce": self.nonce,
            "chainId": self.chain_id,
            "type": self.tx_type,
        }


def decode_signed_transaction(raw: bytes | str) -> SignedTransactionInfo:
    """Decode a legacy or EIP-2718 typed signed transaction.

    ``chain_id`` is None for pre-EIP-155 legacy transactions.
    Raises InvalidConfigError when the bytes are not a signed transaction.
    """
    try:
        data = _as_bytes(raw)
        if not data:
            raise ValueError("empty transaction")
        if data[0] >= 0xC0:
            tx_type = 0
            fields = rlp.decode(data)
            nonce = big_endian_to_int(fields[0])
            v = big_endian_to_int(fields[6])
            chain_id = None if v in (27, 28) else (v - 35) // 2
        elif data[0] in (0x01, 0x02):
            tx_type = data[0]
            fields = rlp.decode(data[1:])
            chain_id = big_endian_to_int(fields[0])
            nonce = big_endian_to_int(fields[1])
        else:
            raise ValueError(f"unsupported transaction type 0x{data[0]:02x}")
        sender = Account.recover_transaction(data)
    except (RLPException, ValueError, TypeError, IndexError) as e:
        raise InvalidConfigError(f"Not a signed transaction: {e}")
    return SignedTransactionInfo(
        raw=data,
        tx_hash=to_hex(keccak(data)),
        sender=normalize_address(sender),
        nonce=nonce,
        chain_id=chain_id,
        tx_type=tx_type,
    )
