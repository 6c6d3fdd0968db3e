"""
environment.py - Exchange Credential Loading

Selects the trading environment (testnet/live) and loads the matching API
credentials from a .env file. Secrets never appear in repr() output.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from enum import Enum
import logging

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


class Environment(Enum):
    """Exchange environments the live session can connect to."""
    TESTNET = "testnet"
    LIVE = "live"


@dataclass
class EnvironmentConfig:
    """
    Credentials for one trading environment.

    Attributes:
        mode: Environment mode (testnet/live)
        api_key: API key for the environment
        api_secret: API secret for the environment
    """
    mode: Environment
    api_key: Optional[str] = None
    api_secret: Optional[str] = None

    @property
    def testnet(self) -> bool:
        return self.mode == Environment.TESTNET

    def is_valid(self) -> bool:
        """
        Check if configuration has required credentials.

        Returns:
            True if api_key and api_secret are present
        """
        return bool(self.api_key and self.api_secret)

    def __repr__(self) -> str:
        """Safe string representation (hides secrets)."""
        return (f"EnvironmentConfig(mode={self.mode.value}, "
                f"api_key={'***' if self.api_key else None}, "
                f"api_secret={'***' if self.api_secret else None})")


# Expected environment variable prefixes for each mode
ENV_VAR_PREFIXES = {
    Environment.TESTNET: "TESTNET_",
    Environment.LIVE: "LIVE_",
}


def load_environment(mode: Environment, env_file: Optional[str] = ".env") -> EnvironmentConfig:
    """
    Load credentials for a mode from the process environment.

    The .env file is read first when it exists; variables already present in
    the process environment are overridden by the file.

    Args:
        mode: Environment to load credentials for
        env_file: Path to .env file (None to skip reading a file)

    Returns:
        EnvironmentConfig (possibly without credentials; check is_valid())
    """
    if env_file:
        if Path(env_file).exists():
            load_dotenv(env_file, override=True)
            logger.info(f"Loaded environment variables from: {env_file}")
        else:
            logger.warning(f"Environment file not found: {env_file}")

    prefix = ENV_VAR_PREFIXES[mode]
    config = EnvironmentConfig(
        mode=mode,
        api_key=os.getenv(f"{prefix}API_KEY"),
        api_secret=os.getenv(f"{prefix}API_SECRET"),
    )

    if config.is_valid():
        logger.info(f"Loaded valid configuration for {mode.value}")
    else:
        logger.warning(f"Incomplete configuration for {mode.value}")

    if mode == Environment.LIVE:
        logger.warning("⚠️  LIVE mode selected: orders will be sent to the real exchange")

    return config
