"""
Exception taxonomy for the DAO deployer.

Every error carries a ``context`` dict (addresses, amounts, network name) so
an operator can act on a failure without re-deriving state.
"""

from __future__ import annotations

from typing import Any


class DAODeployerError(Exception):
    """Base exception for all deployer errors"""

    code = "DAO_DEPLOYER_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


class UnsupportedNetworkError(DAODeployerError):
    code = "UNSUPPORTED_NETWORK"


class StorageError(DAODeployerError):
    code = "STORAGE_ERROR"


class NotFoundError(DAODeployerError):
    code = "NOT_FOUND"


class CorruptRecordError(DAODeployerError):
    code = "CORRUPT_RECORD"


class NetworkError(DAODeployerError):
    """RPC endpoint unreachable, timed out, or answering for the wrong chain."""

    code = "NETWORK_ERROR"


class EstimationError(DAODeployerError):
    """Gas simulation reverted or the estimation endpoint was unavailable."""

    code = "ESTIMATION_ERROR"


class MissingBytecodeError(DAODeployerError):
    code = "MISSING_BYTECODE"


class MissingDependencyError(DAODeployerError):
    code = "MISSING_DEPENDENCY"


class NonceConflictError(DAODeployerError):
    """Broadcast rejected because the nonce was already used. Retryable."""

    code = "NONCE_CONFLICT"


class InvalidConfigError(DAODeployerError, ValueError):
    code = "INVALID_CONFIG"

    def __init__(self, message: str, issues: list[str] | None = None, **context: Any) -> None:
        super().__init__(message, issues=list(issues or []), **context)
        self.issues = list(issues or [])


class HardwareWalletError(DAODeployerError):
    """Base class for errors raised by the external signing device"""

    code = "HARDWARE_WALLET_ERROR"


class UserRejectedError(HardwareWalletError):
    code = "USER_REJECTED"


class DeviceUnavailableError(HardwareWalletError):
    code = "DEVICE_UNAVAILABLE"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)
