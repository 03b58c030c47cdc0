"""Desired-state manifest models."""
import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from homestead.models.facts import MachineFacts, PiModel

SSH_KEY_ALGORITHMS = ("ed25519", "ed25519-sk", "ecdsa", "ecdsa-sk", "rsa")


def _as_list(value):
    """Allow a bare string wherever a list of strings is expected."""
    if isinstance(value, str):
        return [value]
    return value


class SSHIdentity(BaseModel):
    """Key pair the machine should own."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    algorithm: str = "ed25519"
    path: str = "~/.ssh/id_ed25519"
    comment: Optional[str] = None

    @field_validator('algorithm')
    @classmethod
    def validate_algorithm(cls, v):
        if v not in SSH_KEY_ALGORITHMS:
            raise ValueError(
                f"Unsupported key algorithm '{v}'. Use one of: {', '.join(SSH_KEY_ALGORITHMS)}"
            )
        return v

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        if not v.strip():
            raise ValueError("SSH key path cannot be empty")
        return v


class SSHHost(BaseModel):
    """One ``Host`` block in ~/.ssh/config."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    alias: str
    hostname: str
    user: str = "pi"
    identity_file: str = "~/.ssh/id_ed25519"

    @field_validator('alias')
    @classmethod
    def validate_alias(cls, v):
        if not re.match(r'^[A-Za-z0-9._-]+$', v):
            raise ValueError(
                f"Host alias '{v}' must be a single word of letters, digits, '.', '_' or '-'"
            )
        return v

    @field_validator('hostname', 'user', 'identity_file')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip() or any(ch.isspace() for ch in v):
            raise ValueError("value must be non-empty and contain no whitespace")
        return v


class InstallCheck(BaseModel):
    """Boolean capability test deciding whether an entry is already converged."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    type: Literal["command", "package", "path", "extension", "service"]
    value: List[str]
    negate: bool = False  # satisfied when the thing is absent

    @field_validator('value', mode='before')
    @classmethod
    def coerce_value(cls, v):
        return _as_list(v)

    @field_validator('value')
    @classmethod
    def validate_value(cls, v):
        if not v or any(not item.strip() for item in v):
            raise ValueError("install check needs at least one non-empty value")
        return v


class InstallAction(BaseModel):
    """What to run when an entry's check does not hold."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    type: Literal[
        "package",
        "remove",
        "apt_repository",
        "download",
        "git_clone",
        "command",
        "vscode_extension",
    ]
    packages: List[str] = Field(default_factory=list)
    url: Optional[str] = None
    dest: Optional[str] = None
    executable: bool = False
    keyring_url: Optional[str] = None
    keyring_path: Optional[str] = None
    dearmor: bool = True
    source: Optional[str] = None
    list_path: Optional[str] = None
    argv: List[str] = Field(default_factory=list)
    sudo: bool = False
    cwd: Optional[str] = None
    extension: Optional[str] = None
    recursive: bool = True

    @field_validator('packages', mode='before')
    @classmethod
    def coerce_packages(cls, v):
        return _as_list(v)

    @model_validator(mode='after')
    def validate_required_fields(self) -> 'InstallAction':
        required = {
            "package": ("packages",),
            "remove": ("packages",),
            "apt_repository": ("packages", "keyring_url", "keyring_path", "source", "list_path"),
            "download": ("url", "dest"),
            "git_clone": ("url", "dest"),
            "command": ("argv",),
            "vscode_extension": ("extension",),
        }[self.type]
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"'{self.type}' action requires: {', '.join(missing)}")
        for url_field in ("url", "keyring_url"):
            url = getattr(self, url_field)
            if url and not url.startswith(("https://", "http://")):
                raise ValueError(f"{url_field} must start with https:// or http://. Got: {url}")
        return self


class Applicability(BaseModel):
    """Gating predicate evaluated against MachineFacts.

    Empty lists mean "any". ``requires`` names earlier entries whose check
    must hold when this entry is reached; it is re-probed by the driver.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    os_family: List[Literal["linux", "windows", "darwin"]] = Field(default_factory=list)
    min_ram_gb: Optional[float] = None
    pi_models: List[PiModel] = Field(default_factory=list)
    arch: List[str] = Field(default_factory=list)
    requires_desktop: bool = False
    requires: List[str] = Field(default_factory=list)

    @field_validator('os_family', 'pi_models', 'arch', 'requires', mode='before')
    @classmethod
    def coerce_lists(cls, v):
        return _as_list(v)

    @property
    def ram_gated(self) -> bool:
        return self.min_ram_gb is not None

    def reason_not_applicable(self, facts: MachineFacts) -> Optional[str]:
        """Return why the entry does not apply to ``facts``, or None if it does."""
        if self.os_family and facts.os_family.value not in self.os_family:
            return f"os is {facts.os_family.value}, needs {'/'.join(self.os_family)}"
        if self.min_ram_gb is not None and facts.ram_gb < self.min_ram_gb:
            return f"RAM {facts.ram_gb:.2f} GB < {self.min_ram_gb:g} GB"
        if self.pi_models and facts.pi_model not in self.pi_models:
            wanted = '/'.join(model.value for model in self.pi_models)
            return f"board is {facts.pi_model.value}, needs {wanted}"
        if self.arch and facts.arch not in self.arch:
            return f"arch is {facts.arch or 'unknown'}, needs {'/'.join(self.arch)}"
        if self.requires_desktop and not facts.has_desktop:
            return "no desktop environment"
        return None


class PackageEntry(BaseModel):
    """A package or tool the machine should have (or not have)."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    name: str
    description: Optional[str] = None
    check: InstallCheck
    action: InstallAction
    when: Applicability = Field(default_factory=Applicability)
    required: bool = False


class ServiceEntry(BaseModel):
    """A system service that should be enabled and running."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    name: str
    unit: Optional[str] = None  # service manager name, defaults to ``name``
    check: Optional[InstallCheck] = None
    when: Applicability = Field(default_factory=Applicability)
    required: bool = False

    @property
    def service_name(self) -> str:
        return self.unit or self.name

    @property
    def effective_check(self) -> InstallCheck:
        return self.check or InstallCheck(type="service", value=[self.service_name])


class Manifest(BaseModel):
    """Static description of the desired machine state."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    ssh_identity: SSHIdentity = Field(default_factory=SSHIdentity)
    ssh_hosts: List[SSHHost] = Field(default_factory=list)
    packages: List[PackageEntry] = Field(default_factory=list)
    services: List[ServiceEntry] = Field(default_factory=list)

    def entry_names(self) -> List[str]:
        return [entry.name for entry in self.packages] + [entry.name for entry in self.services]

    def find_entry(self, name: str):
        for entry in list(self.packages) + list(self.services):
            if entry.name == name:
                return entry
        return None
