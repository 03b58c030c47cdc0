"""Abstract base class for package backends."""
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from homestead.core.command import CommandRunner


class PackageBackend(ABC):
    """Abstract interface over a system package manager.

    Queries return booleans and never raise. Mutating calls raise
    ``ActionFailed`` with the command diagnostic when they do not succeed.
    """

    name = "abstract"

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: Optional[float] = None):
        """Initialize backend.

        Args:
            runner: Command runner used for every external call
            timeout: Per-action timeout in seconds (None = no limit)
        """
        self.runner = runner or CommandRunner()
        self.timeout = timeout

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        """Check if a package is present.

        Args:
            package: Backend-specific package identifier

        Returns:
            True if installed, False otherwise (including when unknown)
        """
        pass

    @abstractmethod
    def install(self, packages: Sequence[str]) -> None:
        """Install one or more packages.

        Raises:
            ActionFailed: If the package manager reports failure
        """
        pass

    @abstractmethod
    def remove(self, packages: Sequence[str]) -> None:
        """Remove (purge where supported) one or more packages.

        Raises:
            ActionFailed: If the package manager reports failure
        """
        pass

    @abstractmethod
    def enable_service(self, service: str) -> None:
        """Enable a service at boot and start it now.

        Raises:
            ActionFailed: If the service manager reports failure
        """
        pass

    @abstractmethod
    def is_service_enabled(self, service: str) -> bool:
        """Check if a service is both enabled and running."""
        pass

    def refresh(self) -> None:
        """Refresh package indexes. No-op for backends without an index."""
        return None

    def add_repository(self, keyring_url: str, keyring_path: str, source: str,
                       list_path: str, dearmor: bool = True) -> bool:
        """Register a third-party package source.

        Returns:
            True if anything was written, False if already configured

        Raises:
            ActionFailed: If the backend has no notion of repositories or the write fails
        """
        from homestead.models.errors import ActionFailed

        raise ActionFailed(f"{self.name} backend does not support third-party repositories")
