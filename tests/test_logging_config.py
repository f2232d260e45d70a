from __future__ import annotations

import logging
from pathlib import Path

import pytest

from dao_deployer.config.logging_config import get_log_dir, log_sweep, setup_logger, setup_sweep_logger


def test_setup_logger_writes_main_and_error_logs(tmp_path: Path) -> None:
    logger = setup_logger("tests_logging_main", console=False, log_dir=tmp_path)
    logger.info("hello")
    logger.error("broken")
    for handler in logger.handlers:
        handler.flush()
    assert "hello" in (tmp_path / "tests_logging_main.log").read_text()
    assert "broken" in (tmp_path / "tests_logging_main_errors.log").read_text()
    assert setup_logger("tests_logging_main", log_dir=tmp_path) is logger
    assert len(logger.handlers) == 2


def test_log_dir_follows_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("DAO_DEPLOYER_LOG_DIR", raising=False)
    monkeypatch.setenv("DAO_DEPLOYER_DATA_DIR", str(tmp_path))
    assert get_log_dir() == tmp_path / "logs"
    assert (tmp_path / "logs").is_dir()


def test_log_sweep_levels(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("tests.sweep.levels")
    with caplog.at_level(logging.INFO, logger="tests.sweep.levels"):
        log_sweep(logger, "sepolia", "0xA", "0xB", "1 ETH", "swept", tx_hash="0x1", key_deleted=True)
        log_sweep(logger, "sepolia", "0xA", "0xB", "0 ETH", "failed", success=False)
    assert caplog.records[0].levelno == logging.INFO
    assert "TX: 0x1" in caplog.records[0].getMessage()
    assert caplog.records[1].levelno == logging.ERROR


def test_sweep_logger_per_directory(tmp_path: Path) -> None:
    first = setup_sweep_logger(tmp_path / "a")
    second = setup_sweep_logger(tmp_path / "b")
    assert first is not second
    assert setup_sweep_logger(tmp_path / "a") is first

    log_sweep(first, "sepolia", "0xA", "0xB", "1 ETH", "swept")
    log_sweep(second, "sepolia", "0xC", "0xD", "2 ETH", "swept")
    for handler in first.handlers + second.handlers:
        handler.flush()
    (a_log,) = (tmp_path / "a").glob("sweeps_*.log")
    (b_log,) = (tmp_path / "b").glob("sweeps_*.log")
    assert "0xA -> 0xB" in a_log.read_text() and "0xC" not in a_log.read_text()
    assert "0xC -> 0xD" in b_log.read_text() and "0xA" not in b_log.read_text()
