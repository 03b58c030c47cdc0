"""Debian/Ubuntu/Raspberry Pi OS backend (apt-get, dpkg, systemctl)."""
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from homestead.backends.base import PackageBackend
from homestead.core.command import CommandResult, CommandRunner
from homestead.core.download import fetch_bytes
from homestead.core.fileops import atomic_write
from homestead.core.logger import get_logger
from homestead.models.errors import ActionFailed

logger = get_logger(__name__)

APT_ENV = ["env", "DEBIAN_FRONTEND=noninteractive"]


def _running_as_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


class AptBackend(PackageBackend):
    """Package backend for apt-based distributions.

    The package index is refreshed at most once per run, plus once after
    each newly added repository.
    """

    name = "apt"

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: Optional[float] = None,
                 use_sudo: Optional[bool] = None):
        super().__init__(runner=runner, timeout=timeout)
        self.use_sudo = (not _running_as_root()) if use_sudo is None else use_sudo
        self._index_fresh = False
        self._arch: Optional[str] = None

    # -----------------------------
    #  Queries
    # -----------------------------
    def is_installed(self, package: str) -> bool:
        result = self.runner.run(["dpkg-query", "-W", "-f=${Status}", package], timeout=self.timeout)
        return result.ok and "install ok installed" in result.stdout

    def is_service_enabled(self, service: str) -> bool:
        enabled = self.runner.run(["systemctl", "is-enabled", "--quiet", service], timeout=self.timeout)
        if not enabled.ok:
            return False
        active = self.runner.run(["systemctl", "is-active", "--quiet", service], timeout=self.timeout)
        return active.ok

    def architecture(self) -> str:
        """Return the dpkg architecture (amd64, arm64, armhf, ...)."""
        if self._arch is None:
            result = self.runner.run(["dpkg", "--print-architecture"], timeout=self.timeout)
            self._arch = result.stdout.strip() if result.ok else ""
        return self._arch

    # -----------------------------
    #  Mutations
    # -----------------------------
    def refresh(self) -> None:
        if self._index_fresh:
            return
        self._check(self._run_privileged(APT_ENV + ["apt-get", "update", "-y"]), "apt-get update failed")
        self._index_fresh = True

    def install(self, packages: Sequence[str]) -> None:
        self.refresh()
        self._check(
            self._run_privileged(APT_ENV + ["apt-get", "install", "-y", *packages]),
            f"apt-get install failed for {' '.join(packages)}",
        )

    def remove(self, packages: Sequence[str]) -> None:
        self._check(
            self._run_privileged(APT_ENV + ["apt-get", "remove", "-y", "--purge", *packages]),
            f"apt-get remove failed for {' '.join(packages)}",
        )
        self._check(
            self._run_privileged(APT_ENV + ["apt-get", "autoremove", "-y"]),
            "apt-get autoremove failed",
        )

    def enable_service(self, service: str) -> None:
        self._check(
            self._run_privileged(["systemctl", "enable", "--now", service]),
            f"Failed to enable {service}",
        )

    def add_repository(self, keyring_url: str, keyring_path: str, source: str,
                       list_path: str, dearmor: bool = True) -> bool:
        """Install a signing key and a sources.list.d entry.

        ``{arch}`` in ``source`` is replaced with the dpkg architecture. Both
        files are replaced atomically so a failed run never leaves a
        half-written source list.
        """
        source_line = source.replace("{arch}", self.architecture() or "amd64").strip() + "\n"
        list_file = Path(list_path)
        keyring_file = Path(keyring_path)

        if keyring_file.exists() and _read_text(list_file) == source_line:
            logger.debug(f"Repository already configured: {list_file}")
            return False

        key_material = fetch_bytes(keyring_url)
        if dearmor:
            key_material = self._dearmor(key_material)

        # Key first: a source list without its key breaks every apt-get update.
        self._install_file(key_material, keyring_file, mode=0o644)
        self._install_file(source_line.encode(), list_file, mode=0o644)
        self._index_fresh = False
        logger.info(f"Added apt repository {list_file}")
        return True

    # -----------------------------
    #  Helpers
    # -----------------------------
    def _privileged(self, argv: List[str]) -> List[str]:
        return (["sudo"] + argv) if self.use_sudo else argv

    def _run_privileged(self, argv: List[str]) -> CommandResult:
        return self.runner.run(self._privileged(argv), timeout=self.timeout)

    @staticmethod
    def _check(result: CommandResult, message: str) -> None:
        if not result.ok:
            raise ActionFailed(message, diagnostic=result.diagnostic())

    def _dearmor(self, armored: bytes) -> bytes:
        with tempfile.TemporaryDirectory(prefix="homestead-key-") as tmp:
            src = Path(tmp) / "key.asc"
            out = Path(tmp) / "key.gpg"
            src.write_bytes(armored)
            self._check(
                self.runner.run(["gpg", "--batch", "--yes", "--dearmor", "-o", str(out), str(src)],
                                timeout=self.timeout),
                "gpg --dearmor failed",
            )
            return out.read_bytes()

    def _install_file(self, content: bytes, dest: Path, mode: int) -> None:
        """Atomically place a root-owned file, going through sudo when needed."""
        if not self.use_sudo:
            try:
                atomic_write(dest, content, mode=mode)
            except OSError as e:
                raise ActionFailed(f"Cannot write {dest}", diagnostic=str(e)) from e
            return

        staged = f"{dest}.homestead-new"
        with tempfile.NamedTemporaryFile(prefix="homestead-", delete=False) as tmp:
            tmp.write(content)
            local = tmp.name
        try:
            self._check(
                self._run_privileged(["install", "-D", "-m", format(mode, "o"), local, staged]),
                f"Cannot stage {dest}",
            )
            moved = self._run_privileged(["mv", "-f", staged, str(dest)])
            if not moved.ok:
                self._run_privileged(["rm", "-f", staged])
                raise ActionFailed(f"Cannot replace {dest}", diagnostic=moved.diagnostic())
        finally:
            os.unlink(local)


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text()
    except OSError:
        return None
