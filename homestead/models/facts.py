"""Probed machine facts."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class PiModel(str, Enum):
    """Raspberry Pi board family as read from the device tree."""

    NONE = "none"
    ZERO_OR_ONE = "zero_or_one"
    TWO = "two"
    FOUR = "four"
    FIVE = "five"
    UNKNOWN = "unknown"

    @property
    def is_pi(self) -> bool:
        # Unknown boards get no Pi-specific treatment.
        return self not in (PiModel.NONE, PiModel.UNKNOWN)


class OSFamily(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    DARWIN = "darwin"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MachineFacts:
    """Snapshot of the machine captured once at the start of a run.

    ``installed`` maps manifest entry names to the result of their install
    check at capture time. The driver re-probes ``requires`` live instead of
    trusting this snapshot.
    """

    os_family: OSFamily = OSFamily.UNKNOWN
    arch: str = ""
    ram_gb: float = 0.0
    pi_model: PiModel = PiModel.NONE
    has_desktop: bool = False
    is_wsl: bool = False
    installed: Dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "os_family": self.os_family.value,
            "arch": self.arch,
            "ram_gb": self.ram_gb,
            "pi_model": self.pi_model.value,
            "has_desktop": self.has_desktop,
            "is_wsl": self.is_wsl,
            "installed": dict(self.installed),
        }
