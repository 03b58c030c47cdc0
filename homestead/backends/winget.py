"""Windows backend (winget for packages, PowerShell for services)."""
from typing import List, Sequence

from homestead.backends.base import PackageBackend
from homestead.core.command import CommandResult
from homestead.core.logger import get_logger
from homestead.models.errors import ActionFailed

logger = get_logger(__name__)

AGREEMENTS = ["--accept-source-agreements"]


class WingetBackend(PackageBackend):
    """Package backend for Windows using winget package identifiers."""

    name = "winget"

    def is_installed(self, package: str) -> bool:
        result = self.runner.run(
            ["winget", "list", "--id", package, "--exact", *AGREEMENTS],
            timeout=self.timeout,
        )
        # winget prints a table row containing the id when present
        return result.ok and package.lower() in result.stdout.lower()

    def install(self, packages: Sequence[str]) -> None:
        for package in packages:
            self._check(
                self.runner.run(
                    ["winget", "install", "--id", package, "--exact", "--silent",
                     "--accept-package-agreements", *AGREEMENTS],
                    timeout=self.timeout,
                ),
                f"winget install failed for {package}",
            )

    def remove(self, packages: Sequence[str]) -> None:
        for package in packages:
            self._check(
                self.runner.run(
                    ["winget", "uninstall", "--id", package, "--exact", "--silent", *AGREEMENTS],
                    timeout=self.timeout,
                ),
                f"winget uninstall failed for {package}",
            )

    def enable_service(self, service: str) -> None:
        script = (
            f"Set-Service -Name '{service}' -StartupType Automatic; "
            f"Start-Service -Name '{service}'"
        )
        self._check(self._powershell(script), f"Failed to enable {service}")

    def is_service_enabled(self, service: str) -> bool:
        script = (
            f"$s = Get-Service -Name '{service}' -ErrorAction Stop; "
            "($s.StartType -eq 'Automatic') -and ($s.Status -eq 'Running')"
        )
        result = self._powershell(script)
        return result.ok and result.stdout.strip().lower() == "true"

    def _powershell(self, script: str) -> CommandResult:
        argv: List[str] = ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]
        return self.runner.run(argv, timeout=self.timeout)

    @staticmethod
    def _check(result: CommandResult, message: str) -> None:
        if not result.ok:
            raise ActionFailed(message, diagnostic=result.diagnostic())
