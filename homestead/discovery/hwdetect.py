import os
import platform
import re
import shutil
from decimal import ROUND_DOWN, Decimal
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from homestead.core.command import CommandRunner
from homestead.core.config import get_config
from homestead.core.logger import get_logger
from homestead.models.errors import ProbeUncertain
from homestead.models.facts import MachineFacts, OSFamily, PiModel

logger = get_logger(__name__)

MEMINFO_PATH = Path("/proc/meminfo")
DEVICE_TREE_MODEL_PATH = Path("/proc/device-tree/model")
PROC_VERSION_PATH = Path("/proc/version")

DISPLAY_MANAGERS = ("gdm", "lightdm")

# Checked in order; the first match wins.
PI_MODEL_MARKERS = (
    (("Pi Zero", "Pi 1"), PiModel.ZERO_OR_ONE),
    (("Pi 2",), PiModel.TWO),
    (("Pi 4",), PiModel.FOUR),
    (("Pi 5", "Pi 500"), PiModel.FIVE),
)

_CENT = Decimal("0.01")


def classify_pi_model(model: str) -> PiModel:
    """Map a device-tree model string to a board family."""
    for markers, pi_model in PI_MODEL_MARKERS:
        if any(marker in model for marker in markers):
            return pi_model
    return PiModel.UNKNOWN


def kb_to_gb(kb: int) -> float:
    """Convert kB to GB the way ``bc`` does with ``scale=2``.

    Each division is truncated to two decimals, so 4194303 kB is 3.99 GB,
    not 4.00. The RAM gate is ``>= 4.0`` and must agree with that.
    """
    mb = (Decimal(kb) / 1024).quantize(_CENT, rounding=ROUND_DOWN)
    gb = (mb / 1024).quantize(_CENT, rounding=ROUND_DOWN)
    return float(gb)


class SystemDetector:
    """
    Read-only probes for the facts a convergence run branches on.
    Every probe returns a conservative default instead of raising.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        env: Optional[Mapping[str, str]] = None,
        which: Optional[Callable[[str], Optional[str]]] = None,
        system: Optional[str] = None,
        machine: Optional[str] = None,
        meminfo_path: Path = MEMINFO_PATH,
        model_path: Path = DEVICE_TREE_MODEL_PATH,
        version_path: Path = PROC_VERSION_PATH,
    ):
        self.runner = runner or CommandRunner()
        self.env = os.environ if env is None else env
        self.which = which or shutil.which
        self.system = system if system is not None else platform.system()
        self.machine = machine if machine is not None else platform.machine()
        self.meminfo_path = Path(meminfo_path)
        self.model_path = Path(model_path)
        self.version_path = Path(version_path)

    # -----------------------------
    #  Core detection entry points
    # -----------------------------
    def capture_facts(self, manifest=None, backend=None) -> MachineFacts:
        """Snapshot every fact once, including each manifest entry's check."""
        os_family = self.probe_os_family()
        installed: Dict[str, bool] = {}
        if manifest is not None:
            for entry in manifest.packages:
                installed[entry.name] = self.probe_check(entry.check, backend)
            for service in manifest.services:
                installed[service.name] = self.probe_check(service.effective_check, backend)

        facts = MachineFacts(
            os_family=os_family,
            arch=self.probe_arch(),
            ram_gb=self.probe_ram_gb(),
            pi_model=self.probe_pi_model(),
            has_desktop=self.probe_desktop(),
            is_wsl=self.probe_is_wsl(),
            installed=installed,
        )
        logger.info(
            f"Facts: os={facts.os_family.value} arch={facts.arch} ram={facts.ram_gb:.2f}GB "
            f"pi={facts.pi_model.value} desktop={facts.has_desktop}"
        )
        return facts

    # -----------------------------
    #  Individual probes
    # -----------------------------
    def probe_os_family(self) -> OSFamily:
        try:
            return OSFamily(self.system.lower())
        except ValueError:
            return OSFamily.UNKNOWN

    def probe_arch(self) -> str:
        return (self.machine or "").lower()

    def probe_is_wsl(self) -> bool:
        try:
            return "microsoft" in self._read_text(self.version_path).lower()
        except ProbeUncertain:
            return False

    def probe_ram_gb(self) -> float:
        """Total RAM in GB, or 0.0 when it cannot be read (disables RAM-gated entries)."""
        try:
            if self.probe_os_family() == OSFamily.WINDOWS:
                return kb_to_gb(self._windows_memory_kb())
            meminfo = self._read_text(self.meminfo_path)
            match = re.search(r"^MemTotal:\s+(\d+)", meminfo, re.MULTILINE)
            if not match:
                raise ProbeUncertain("MemTotal missing from meminfo")
            return kb_to_gb(int(match.group(1)))
        except ProbeUncertain as e:
            logger.debug(f"RAM probe uncertain, assuming 0 GB: {e}")
            return 0.0

    def probe_pi_model(self) -> PiModel:
        if not self.model_path.exists():
            return PiModel.NONE
        try:
            return classify_pi_model(self._read_model_string())
        except ProbeUncertain as e:
            logger.debug(f"Pi model probe uncertain, treating as not-a-Pi: {e}")
            return PiModel.NONE

    def probe_desktop(self) -> bool:
        if self.probe_os_family() == OSFamily.WINDOWS:
            return True
        if self.env.get("DISPLAY") or self.env.get("WAYLAND_DISPLAY"):
            return True
        for manager in DISPLAY_MANAGERS:
            result = self.runner.run(
                ["systemctl", "is-active", "--quiet", manager],
                timeout=get_config().check_timeout,
            )
            if result.ok:
                return True
        return False

    def probe_check(self, check, backend=None) -> bool:
        """Evaluate an install check. ``command`` needs any value; the rest need all.

        ``negate`` flips the result for entries that describe absence.
        """
        try:
            present = self._evaluate_check(check, backend)
        except (OSError, ProbeUncertain) as e:
            logger.debug(f"Check {check.type}:{check.value} uncertain, treating as absent: {e}")
            present = False
        return (not present) if check.negate else present

    # -----------------------------
    #  Utility helpers
    # -----------------------------
    def _evaluate_check(self, check, backend) -> bool:
        if check.type == "command":
            return any(self.which(name) for name in check.value)
        if check.type == "path":
            return all(Path(p).expanduser().exists() for p in check.value)
        if check.type == "package":
            if backend is None:
                raise ProbeUncertain("no package backend available")
            return all(backend.is_installed(name) for name in check.value)
        if check.type == "service":
            if backend is None:
                raise ProbeUncertain("no package backend available")
            return all(backend.is_service_enabled(name) for name in check.value)
        if check.type == "extension":
            listed = self._vscode_extensions()
            return all(ext.lower() in listed for ext in check.value)
        raise ProbeUncertain(f"unknown check type {check.type}")

    def _vscode_extensions(self) -> set:
        code = self.which("code")
        if not code:
            raise ProbeUncertain("VS Code CLI not on PATH")
        result = self.runner.run([code, "--list-extensions"], timeout=get_config().check_timeout)
        if not result.ok:
            raise ProbeUncertain(result.diagnostic())
        return {line.strip().lower() for line in result.stdout.splitlines() if line.strip()}

    def _windows_memory_kb(self) -> int:
        result = self.runner.run(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command",
             "(Get-CimInstance Win32_ComputerSystem).TotalPhysicalMemory"],
            timeout=get_config().check_timeout,
        )
        if not result.ok or not result.stdout.strip().isdigit():
            raise ProbeUncertain(result.diagnostic())
        return int(result.stdout.strip()) // 1024

    def _read_model_string(self) -> str:
        return self._read_text(self.model_path).replace("\x00", "").strip()

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_text(errors="replace")
        except OSError as e:
            raise ProbeUncertain(f"cannot read {path}: {e}") from e
