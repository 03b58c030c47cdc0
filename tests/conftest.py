"""Shared test fixtures for Homestead tests."""
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from homestead.backends.base import PackageBackend
from homestead.core.command import CommandResult
from homestead.core.config import set_config
from homestead.discovery.hwdetect import SystemDetector
from homestead.models.errors import ActionFailed
from homestead.models.manifest import Manifest


class StubRunner:
    """CommandRunner stand-in that records argv and never spawns a process.

    ``handler`` receives the argv list and returns ``(returncode, stdout)``
    or None for the default result.
    """

    def __init__(self, handler: Optional[Callable[[List[str]], Optional[tuple]]] = None,
                 default_returncode: int = 0):
        self.handler = handler
        self.default_returncode = default_returncode
        self.calls: List[List[str]] = []

    def run(self, argv, timeout=None, cwd=None, env=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        response = self.handler(argv) if self.handler else None
        if response is None:
            response = (self.default_returncode, "")
        returncode, stdout = response
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout,
                             stderr="" if returncode == 0 else "stub failure")

    def commands(self, program: str) -> List[List[str]]:
        return [argv for argv in self.calls if program in argv]


class FakeBackend(PackageBackend):
    """In-memory package manager."""

    name = "fake"

    def __init__(self, installed: Sequence[str] = (), failing: Sequence[str] = ()):
        super().__init__(runner=StubRunner())
        self.installed = set(installed)
        self.failing = set(failing)
        self.services: set = set()
        self.calls: List[tuple] = []

    def is_installed(self, package: str) -> bool:
        return package in self.installed

    def install(self, packages: Sequence[str]) -> None:
        self.calls.append(("install", tuple(packages)))
        broken = [p for p in packages if p in self.failing]
        if broken:
            raise ActionFailed(f"install failed for {' '.join(broken)}", diagnostic="exit 100: apt-get install")
        self.installed.update(packages)

    def remove(self, packages: Sequence[str]) -> None:
        self.calls.append(("remove", tuple(packages)))
        self.installed.difference_update(packages)

    def enable_service(self, service: str) -> None:
        self.calls.append(("enable", service))
        if service in self.failing:
            raise ActionFailed(f"Failed to enable {service}")
        self.services.add(service)

    def is_service_enabled(self, service: str) -> bool:
        return service in self.services


def keygen_handler(argv: List[str]) -> Optional[tuple]:
    """Emulate ssh-keygen by writing both halves of the key."""
    if argv and argv[0] == "ssh-keygen":
        key = Path(argv[argv.index("-f") + 1])
        key.write_text("PRIVATE KEY\n")
        key.with_name(key.name + ".pub").write_text("ssh-ed25519 AAAA test\n")
        return (0, "")
    return None


def write_meminfo(path: Path, kb: int) -> Path:
    path.write_text(f"MemTotal:       {kb} kB\nMemFree:        1024 kB\n")
    return path


@pytest.fixture(autouse=True)
def reset_config():
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def make_detector(tmp_path):
    """Build a SystemDetector over fake /proc files and a fake PATH."""

    def _make(ram_kb: int = 8 * 1024 * 1024, model: Optional[str] = None,
              commands: Sequence[str] = (), system: str = "Linux", machine: str = "x86_64",
              env: Optional[Dict[str, str]] = None, runner=None) -> SystemDetector:
        proc = tmp_path / "proc"
        proc.mkdir(exist_ok=True)
        meminfo = write_meminfo(proc / "meminfo", ram_kb)
        model_path = proc / "model"
        if model is not None:
            model_path.write_text(model + "\x00")
        on_path = set(commands)
        return SystemDetector(
            runner=runner or StubRunner(default_returncode=1),
            env=env or {},
            which=lambda name: f"/usr/bin/{name}" if name in on_path else None,
            system=system,
            machine=machine,
            meminfo_path=meminfo,
            model_path=model_path,
            version_path=proc / "version",
        )

    return _make


@pytest.fixture
def home(tmp_path):
    """Fake home directory with an empty ~/.ssh location."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def make_manifest(home):
    """Build a validated Manifest whose SSH files live under the fake home."""

    def _make(packages=None, services=None, hosts=None) -> Manifest:
        key = str(home / ".ssh" / "id_ed25519")
        if hosts is None:
            hosts = [{"alias": "a", "hostname": "a.local"}, {"alias": "b", "hostname": "b.local"}]
        return Manifest.model_validate({
            "ssh_identity": {"algorithm": "ed25519", "path": key, "comment": "test@host"},
            "ssh_hosts": [{"identity_file": key, **host} for host in hosts],
            "packages": packages or [],
            "services": services or [],
        })

    return _make
