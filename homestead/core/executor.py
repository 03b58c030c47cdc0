"""
Action execution for Homestead entries.

Every action is gated by its install check:
- check holds: nothing runs, outcome is skipped_already_satisfied
- check fails: the action runs through the package backend or a command
- any failure is captured as a failed outcome, never raised
"""
import os
import shutil
from pathlib import Path
from typing import Callable, List, Optional

from homestead.backends.base import PackageBackend
from homestead.core.command import CommandRunner
from homestead.core.download import download_file
from homestead.core.logger import get_logger
from homestead.core.report import ActionOutcome, OutcomeStatus, Phase
from homestead.discovery.hwdetect import SystemDetector
from homestead.models.errors import ActionFailed
from homestead.models.manifest import InstallAction, InstallCheck, PackageEntry, ServiceEntry

logger = get_logger(__name__)


def _expand(value: str) -> str:
    return os.path.expanduser(value) if value.startswith("~") else value


class ActionExecutor:
    """Runs one entry at a time: re-check, act, record."""

    def __init__(
        self,
        backend: PackageBackend,
        detector: SystemDetector,
        runner: Optional[CommandRunner] = None,
        dry_run: bool = False,
        timeout: Optional[float] = None,
        which: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.backend = backend
        self.detector = detector
        self.runner = runner or CommandRunner()
        self.dry_run = dry_run
        self.timeout = timeout
        self.which = which or getattr(detector, "which", shutil.which)

    # -----------------------------
    #  Entry points
    # -----------------------------
    def execute_package(self, entry: PackageEntry) -> ActionOutcome:
        return self.execute(
            target=entry.name,
            check=entry.check,
            perform=lambda: self._perform(entry.action),
            required=entry.required,
            phase=Phase.PACKAGES,
        )

    def execute_service(self, entry: ServiceEntry) -> ActionOutcome:
        def enable() -> str:
            self.backend.enable_service(entry.service_name)
            return f"enabled and started {entry.service_name}"

        return self.execute(
            target=entry.name,
            check=entry.effective_check,
            perform=enable,
            required=entry.required,
            phase=Phase.SERVICES,
        )

    def is_satisfied(self, check: InstallCheck) -> bool:
        return self.detector.probe_check(check, self.backend)

    def execute(
        self,
        target: str,
        check: InstallCheck,
        perform: Callable[[], str],
        required: bool = False,
        phase: str = Phase.PACKAGES,
    ) -> ActionOutcome:
        """Re-run ``check``; run ``perform`` only if it does not hold."""

        def outcome(status: str, detail: str) -> ActionOutcome:
            return ActionOutcome(target, status, detail, required=required, phase=phase)

        if self.is_satisfied(check):
            logger.debug(f"{target}: already satisfied")
            return outcome(OutcomeStatus.SKIPPED_ALREADY_SATISFIED, "")

        if self.dry_run:
            return outcome(OutcomeStatus.WOULD_APPLY, "")

        logger.info(f"{target}: applying")
        try:
            detail = perform()
        except ActionFailed as e:
            logger.debug(f"{target}: {e.detail()}")
            return outcome(OutcomeStatus.FAILED, e.detail())
        except OSError as e:
            logger.debug(f"{target}: {e}")
            return outcome(OutcomeStatus.FAILED, str(e))

        if not self.is_satisfied(check):
            # Opaque installers may succeed without producing what the check looks for
            detail = f"{detail}; install check still not satisfied".lstrip("; ")
            logger.warning(f"{target}: {detail}")
        return outcome(OutcomeStatus.APPLIED, detail)

    # -----------------------------
    #  Action implementations
    # -----------------------------
    def _perform(self, action: InstallAction) -> str:
        handler = {
            "package": self._install_packages,
            "remove": self._remove_packages,
            "apt_repository": self._install_from_repository,
            "download": self._download,
            "git_clone": self._git_clone,
            "command": self._run_command,
            "vscode_extension": self._install_vscode_extension,
        }[action.type]
        return handler(action)

    def _install_packages(self, action: InstallAction) -> str:
        self.backend.install(action.packages)
        return f"installed {' '.join(action.packages)}"

    def _remove_packages(self, action: InstallAction) -> str:
        self.backend.remove(action.packages)
        return f"removed {' '.join(action.packages)}"

    def _install_from_repository(self, action: InstallAction) -> str:
        added = self.backend.add_repository(
            keyring_url=action.keyring_url,
            keyring_path=action.keyring_path,
            source=action.source,
            list_path=action.list_path,
            dearmor=action.dearmor,
        )
        self.backend.install(action.packages)
        prefix = f"added {action.list_path}, " if added else ""
        return f"{prefix}installed {' '.join(action.packages)}"

    def _download(self, action: InstallAction) -> str:
        dest = download_file(action.url, Path(_expand(action.dest)), executable=action.executable)
        return f"downloaded {dest}"

    def _git_clone(self, action: InstallAction) -> str:
        dest = Path(_expand(action.dest))
        if dest.exists() and any(dest.iterdir()):
            raise ActionFailed(f"{dest} exists and is not empty")
        argv: List[str] = ["git", "clone"]
        if action.recursive:
            argv.append("--recursive")
        argv += [action.url, str(dest)]
        self._check(self.runner.run(argv, timeout=self.timeout), f"git clone {action.url} failed")
        return f"cloned {action.url} into {dest}"

    def _run_command(self, action: InstallAction) -> str:
        argv = [_expand(arg) for arg in action.argv]
        if action.sudo and self._needs_sudo():
            argv = ["sudo"] + argv
        cwd = _expand(action.cwd) if action.cwd else None
        self._check(
            self.runner.run(argv, timeout=self.timeout, cwd=cwd),
            f"{action.argv[0]} failed",
        )
        return f"ran {' '.join(action.argv)}"

    def _install_vscode_extension(self, action: InstallAction) -> str:
        code = self.which("code")
        if not code:
            raise ActionFailed("VS Code CLI 'code' not found on PATH")
        self._check(
            self.runner.run([code, "--install-extension", action.extension, "--force"], timeout=self.timeout),
            f"Extension {action.extension} failed to install",
        )
        return f"installed extension {action.extension}"

    # -----------------------------
    #  Helpers
    # -----------------------------
    @staticmethod
    def _needs_sudo() -> bool:
        return hasattr(os, "geteuid") and os.geteuid() != 0

    @staticmethod
    def _check(result, message: str) -> None:
        if not result.ok:
            raise ActionFailed(message, diagnostic=result.diagnostic())
