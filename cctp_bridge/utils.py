"""Bunch of random utilities."""

import datetime
import json
import logging
import os
from pathlib import Path
from typing import Optional

import base58
from eth_account import Account
from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair

logger = logging.getLogger(__name__)


def native_datetime_utc_now() -> datetime.datetime:
    """Get current time as naive UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def load_evm_account(private_key: str) -> LocalAccount:
    """Load a hot wallet from a hex private key.

    :param private_key:
        With or without ``0x`` prefix.
    """
    private_key = private_key.strip()
    if not private_key.startswith("0x"):
        private_key = f"0x{private_key}"
    return Account.from_key(private_key)


def load_solana_keypair(private_key: str) -> Keypair:
    """Load a Solana keypair.

    Accepts both the base58 format exported by Phantom and
    the JSON byte array format written by ``solana-keygen``.

    :raise ValueError:
        If the key cannot be decoded.
    """
    raw = private_key.strip()
    if raw.startswith("["):
        secret = bytes(json.loads(raw))
    else:
        secret = base58.b58decode(raw)

    if len(secret) != 64:
        raise ValueError(f"Solana secret key must be 64 bytes, got {len(secret)}")

    return Keypair.from_bytes(secret)


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    log_file: Path | None = None,
    std_out_log_level: Optional[int] = None,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in scripts
    - Tune down some noisy dependency library logging

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if not std_out_log_level:
        std_out_log_level = numeric_level

    if simplified_logging:
        fmt = "%(message)s"
        date_fmt = "%H:%M:%S"
    else:
        fmt = "%(asctime)s %(name)-44s [%(threadName)s] %(message)s"
        date_fmt = "%Y-%m-%d %H:%M:%S"

    try:
        # Optional dev dependency
        import coloredlogs

        coloredlogs.install(level=std_out_log_level, fmt=fmt, date_fmt=date_fmt)
    except ImportError:
        # non-ANSI e.g. Docker
        logging.basicConfig(level=std_out_log_level, format=fmt, datefmt=date_fmt)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # File always gets at least INFO, env var controls only terminal output
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, numeric_level))
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
        root = logging.getLogger()
        root.setLevel(min(logging.INFO, numeric_level))
        root.addHandler(file_handler)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return logging.getLogger()
