"""Homestead runtime configuration and settings."""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class HomesteadConfig:
    """Runtime configuration for convergence runs.

    Attributes:
        action_timeout: Timeout in seconds for one install/enable action (default: 1800)
        check_timeout: Timeout in seconds for one install check (default: 30)
        download_timeout: Timeout in seconds for a single HTTP download (default: 300)
    """

    action_timeout: int = 1800  # apt upgrades and IDE downloads can be slow
    check_timeout: int = 30
    download_timeout: int = 300

    @classmethod
    def from_env(cls) -> "HomesteadConfig":
        """Create config from environment variables.

        Environment variables:
            HOMESTEAD_ACTION_TIMEOUT: Action timeout in seconds
            HOMESTEAD_CHECK_TIMEOUT: Check timeout in seconds
            HOMESTEAD_DOWNLOAD_TIMEOUT: Download timeout in seconds

        Returns:
            HomesteadConfig instance with values from environment or defaults
        """
        return cls(
            action_timeout=int(
                os.getenv("HOMESTEAD_ACTION_TIMEOUT", cls.action_timeout)
            ),
            check_timeout=int(
                os.getenv("HOMESTEAD_CHECK_TIMEOUT", cls.check_timeout)
            ),
            download_timeout=int(
                os.getenv("HOMESTEAD_DOWNLOAD_TIMEOUT", cls.download_timeout)
            ),
        )


# Global config instance (can be overridden)
_config: Optional[HomesteadConfig] = None


def get_config() -> HomesteadConfig:
    """Get the global Homestead configuration.

    Returns:
        HomesteadConfig instance (creates from environment if not set)
    """
    global _config
    if _config is None:
        _config = HomesteadConfig.from_env()
    return _config


def set_config(config: Optional[HomesteadConfig]):
    """Set the global Homestead configuration.

    Args:
        config: HomesteadConfig instance to use globally (None resets to env defaults)
    """
    global _config
    _config = config
