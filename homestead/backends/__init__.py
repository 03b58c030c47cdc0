"""Package backend implementations.

Homestead supports one backend per platform, chosen once at startup:
- apt: Debian, Ubuntu, Raspberry Pi OS, WSL
- winget: Windows
"""
from typing import Optional

from homestead.core.command import CommandRunner
from homestead.models.errors import UnsupportedPlatformError
from homestead.models.facts import MachineFacts, OSFamily

from .apt import AptBackend
from .base import PackageBackend
from .winget import WingetBackend

BACKENDS = {
    OSFamily.LINUX: AptBackend,
    OSFamily.WINDOWS: WingetBackend,
}


def select_backend(facts: MachineFacts, runner: Optional[CommandRunner] = None,
                   timeout: Optional[float] = None) -> PackageBackend:
    """Return the backend for the probed platform.

    Raises:
        UnsupportedPlatformError: If no backend exists for ``facts.os_family``
    """
    backend_cls = BACKENDS.get(facts.os_family)
    if backend_cls is None:
        raise UnsupportedPlatformError(
            f"No package backend for platform '{facts.os_family.value}'. "
            f"Supported: {', '.join(family.value for family in BACKENDS)}"
        )
    return backend_cls(runner=runner, timeout=timeout)


__all__ = ['AptBackend', 'BACKENDS', 'PackageBackend', 'WingetBackend', 'select_backend']
