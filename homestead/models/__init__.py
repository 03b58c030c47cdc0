"""Data models for Homestead."""
from homestead.models.errors import (
    ActionFailed,
    HomesteadError,
    ProbeUncertain,
    ReportWriteError,
    UnsupportedPlatformError,
    ValidationError,
)
from homestead.models.facts import MachineFacts, OSFamily, PiModel
from homestead.models.manifest import (
    Applicability,
    InstallAction,
    InstallCheck,
    Manifest,
    PackageEntry,
    ServiceEntry,
    SSHHost,
    SSHIdentity,
)

__all__ = [
    'ActionFailed',
    'HomesteadError',
    'ProbeUncertain',
    'ReportWriteError',
    'UnsupportedPlatformError',
    'ValidationError',
    'MachineFacts',
    'OSFamily',
    'PiModel',
    'Applicability',
    'InstallAction',
    'InstallCheck',
    'Manifest',
    'PackageEntry',
    'ServiceEntry',
    'SSHHost',
    'SSHIdentity',
]
