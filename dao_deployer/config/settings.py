"""
Runtime settings for the DAO deployer.

Values come from environment variables (optionally loaded from a .env file):

    DAO_DEPLOYER_DATA_DIR              base directory (default ~/.dao-deployer)
    DAO_DEPLOYER_GAS_MULTIPLIER        gas limit multiplier (>= 1.0); beats the per-network value
    DAO_DEPLOYER_CONFIRMATION_TIMEOUT  seconds to wait for a receipt (default 120)
    DAO_DEPLOYER_ARTIFACTS_DIR         forge output directory (default ./contracts/out)
    DAO_DEPLOYER_FEE_MODE              "legacy" or "eip1559" for planned transactions
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from dao_deployer.errors import InvalidConfigError

DEFAULT_GAS_MULTIPLIER = Decimal("1.2")
DEFAULT_CONFIRMATION_TIMEOUT = 120.0
FEE_MODES = ("legacy", "eip1559")


def parse_multiplier(value: Decimal | str | float) -> Decimal:
    """Parse a gas multiplier; ValueError below 1.0 or when not numeric."""
    try:
        multiplier = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid gas multiplier: {value!r}")
    if not multiplier.is_finite() or multiplier < 1:
        raise ValueError(f"Gas multiplier must be >= 1.0, got {value}")
    return multiplier


@dataclass
class DeployerSettings:
    data_directory: Path = field(default_factory=lambda: Path.home() / ".dao-deployer")
    default_gas_multiplier: Optional[Decimal] = None
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    artifacts_dir: Path = field(default_factory=lambda: Path("contracts") / "out")
    fee_mode: str = "legacy"

    def __post_init__(self) -> None:
        self.data_directory = Path(self.data_directory).expanduser()
        self.artifacts_dir = Path(self.artifacts_dir).expanduser()
        if self.default_gas_multiplier is not None:
            self.default_gas_multiplier = parse_multiplier(self.default_gas_multiplier)
        if self.confirmation_timeout <= 0:
            raise ValueError("confirmation_timeout must be positive")
        if self.fee_mode not in FEE_MODES:
            raise ValueError(f"fee_mode must be one of {FEE_MODES}, got {self.fee_mode!r}")

    @property
    def wallets_dir(self) -> Path:
        return self.data_directory / "ephemeral-wallets"

    @property
    def sessions_dir(self) -> Path:
        return self.data_directory / "sessions"

    @property
    def config_file(self) -> Path:
        return self.data_directory / "config.json"

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "DeployerSettings":
        if env_file:
            load_dotenv(env_file)

        kwargs: dict = {}
        data_dir = os.getenv("DAO_DEPLOYER_DATA_DIR")
        if data_dir:
            kwargs["data_directory"] = Path(data_dir)
        artifacts = os.getenv("DAO_DEPLOYER_ARTIFACTS_DIR")
        if artifacts:
            kwargs["artifacts_dir"] = Path(artifacts)
        fee_mode = os.getenv("DAO_DEPLOYER_FEE_MODE")
        if fee_mode:
            kwargs["fee_mode"] = fee_mode.strip().lower()

        try:
            multiplier = os.getenv("DAO_DEPLOYER_GAS_MULTIPLIER")
            if multiplier:
                kwargs["default_gas_multiplier"] = parse_multiplier(multiplier)
            timeout = os.getenv("DAO_DEPLOYER_CONFIRMATION_TIMEOUT")
            if timeout:
                kwargs["confirmation_timeout"] = float(timeout)
            return cls(**kwargs)
        except ValueError as e:
            raise InvalidConfigError(f"Invalid deployer settings: {e}", issues=[str(e)])
