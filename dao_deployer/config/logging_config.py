"""
Logging Configuration for the DAO deployer

Provides structured logging with:
- Timestamps
- Log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- File rotation (1 file per day)
- Separate error log
- Audit trail of every ephemeral wallet sweep
"""

import hashlib
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


# Log formats
DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_dir() -> Path:
    """Log directory: DAO_DEPLOYER_LOG_DIR, else <data dir>/logs."""
    explicit = os.getenv("DAO_DEPLOYER_LOG_DIR")
    if explicit:
        log_dir = Path(explicit).expanduser()
    else:
        data_dir = os.getenv("DAO_DEPLOYER_DATA_DIR") or str(Path.home() / ".dao-deployer")
        log_dir = Path(data_dir).expanduser() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    console: bool = True,
    detailed: bool = False,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Setup a logger with console and file handlers.

    Args:
        name: Logger name (typically the package or command name)
        level: Logging level
        log_file: Optional log file name (defaults to name.log)
        console: Whether to log to console (stderr, so stdout stays parseable)
        detailed: Whether to use detailed format (includes file/line)
        log_dir: Directory for log files (defaults to get_log_dir())

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    log_format = DETAILED_FORMAT if detailed else SIMPLE_FORMAT
    formatter = logging.Formatter(log_format, datefmt=DATE_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    directory = Path(log_dir) if log_dir is not None else get_log_dir()
    directory.mkdir(parents=True, exist_ok=True)

    if log_file is None:
        log_file = f"{name}.log"

    file_handler = TimedRotatingFileHandler(
        directory / log_file,
        when="midnight",
        interval=1,
        backupCount=30,  # Keep 30 days of logs
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    error_handler = RotatingFileHandler(
        directory / f"{name}_errors.log",
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(error_handler)

    return logger


def setup_sweep_logger(log_dir: Optional[Path] = None) -> logging.Logger:
    """
    Setup the audit logger for sweeps.
    One file per month, never rotated, so every fund movement stays on record.
    Each log directory gets its own logger, named after the directory.
    """
    directory = Path(log_dir) if log_dir is not None else get_log_dir()
    digest = hashlib.sha1(str(directory.expanduser().resolve()).encode()).hexdigest()[:12]
    logger = logging.getLogger(f"dao_deployer.audit.sweep.{digest}")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if logger.handlers:
        return logger

    formatter = logging.Formatter(SIMPLE_FORMAT, datefmt=DATE_FORMAT)
    directory.mkdir(parents=True, exist_ok=True)
    sweep_path = directory / f"sweeps_{datetime.now().strftime('%Y%m')}.log"
    handler = logging.FileHandler(sweep_path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def log_sweep(
    logger: logging.Logger,
    network: str,
    wallet: str,
    recipient: str,
    amount: str,
    status: str,
    tx_hash: Optional[str] = None,
    key_deleted: bool = False,
    success: bool = True,
) -> None:
    """
    Log a sweep outcome in structured format.

    Args:
        logger: Sweep audit logger
        network: Network key
        wallet: Ephemeral wallet address
        recipient: Destination address
        amount: Swept amount in display units (with symbol)
        status: SweepStatus value
        tx_hash: Transaction hash, when one was broadcast
        key_deleted: Whether the key file was removed
        success: Whether the sweep succeeded
    """
    msg = (
        f"{'SUCCESS' if success else 'FAILED'} | {status} | {network} | "
        f"{wallet} -> {recipient} | Amount: {amount} | Key deleted: {key_deleted}"
    )
    if tx_hash:
        msg += f" | TX: {tx_hash}"

    if success:
        logger.info(msg)
    else:
        logger.error(msg)
