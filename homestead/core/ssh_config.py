"""Append-only merge of manifest hosts into ~/.ssh/config.

Existing ``Host`` blocks are never edited or removed; only aliases that are
missing get appended after the current content.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from homestead.core.fileops import atomic_write, backup_file
from homestead.core.logger import get_logger
from homestead.core.report import ActionOutcome, OutcomeStatus, Phase
from homestead.models.manifest import SSHHost

logger = get_logger(__name__)

DEFAULT_SSH_CONFIG = Path("~/.ssh/config")
NEW_CONFIG_HEADER = "# SSH config created by homestead\n"

# ssh_config(5) allows "Host alias" and "Host=alias"; keywords are case-insensitive
_BLOCK_START = re.compile(r"^\s*(Host|Match)(?:\s*=\s*|\s+)(.*?)\s*$", re.IGNORECASE)


def host_target(alias: str) -> str:
    return f"ssh-host:{alias}"


@dataclass(frozen=True)
class HostBlock:
    """A ``Host`` block as it appears on disk."""

    patterns: List[str]
    text: str


class SSHConfigDocument:
    """An ssh_config file modelled as ordered host blocks.

    The original text is kept verbatim; appending only ever adds bytes after it.
    """

    def __init__(self, text: str = ""):
        self.text = text
        self.original_text = text
        self.newline = "\r\n" if "\r\n" in text else "\n"
        self.blocks: List[HostBlock] = self._parse(text)

    @classmethod
    def load(cls, path: Path) -> "SSHConfigDocument":
        """Read ``path``; a missing file is an empty document."""
        path = Path(path).expanduser()
        if not path.exists():
            return cls("")
        # newline="" keeps CRLF files byte-for-byte on rewrite
        with open(path, encoding="utf-8", newline="") as f:
            return cls(f.read())

    @staticmethod
    def _parse(text: str) -> List[HostBlock]:
        blocks: List[HostBlock] = []
        current_patterns: Optional[List[str]] = None
        current_lines: List[str] = []

        def close():
            if current_patterns is not None:
                blocks.append(HostBlock(current_patterns, "".join(current_lines)))

        for line in text.splitlines(keepends=True):
            match = _BLOCK_START.match(line)
            if match:
                close()
                current_lines = [line]
                if match.group(1).lower() == "host":
                    current_patterns = [p.strip('"') for p in match.group(2).split()]
                else:
                    current_patterns = None  # Match blocks never satisfy an alias
            elif current_patterns is not None:
                current_lines.append(line)
        close()
        return blocks

    @property
    def is_empty(self) -> bool:
        return not self.original_text

    def has_host(self, alias: str) -> bool:
        alias = alias.lower()
        return any(alias == pattern.lower() for block in self.blocks for pattern in block.patterns)

    def append_host(self, host: SSHHost) -> None:
        if self.has_host(host.alias):
            raise ValueError(f"Host {host.alias} already present")
        newline = self.newline
        text = self.text
        if not text:
            text = NEW_CONFIG_HEADER
        if not text.endswith("\n"):
            text += newline
        if not text.endswith(newline * 2):
            text += newline
        block = render_host_block(host).replace("\n", newline)
        self.text = text + block
        self.blocks.append(HostBlock([host.alias], block))


def render_host_block(host: SSHHost) -> str:
    return (
        f"Host {host.alias}\n"
        f"    HostName {host.hostname}\n"
        f"    User {host.user}\n"
        f"    IdentityFile {host.identity_file}\n"
        f"    IdentitiesOnly yes\n"
    )


def merge_ssh_config(
    hosts: Iterable[SSHHost],
    config_path: Path = DEFAULT_SSH_CONFIG,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> List[ActionOutcome]:
    """Append missing host aliases to the SSH config, in manifest order.

    A non-empty existing file is backed up before it is replaced. Nothing is
    written (and no backup is taken) when every alias is already present.
    """
    hosts = list(hosts)
    path = Path(config_path).expanduser()

    def outcome(alias: str, status: str, detail: str) -> ActionOutcome:
        return ActionOutcome(host_target(alias), status, detail, required=True, phase=Phase.SSH_CONFIG)

    try:
        document = SSHConfigDocument.load(path)
    except (OSError, UnicodeDecodeError) as e:
        return [outcome(h.alias, OutcomeStatus.FAILED, f"cannot read {path}: {e}") for h in hosts]

    appended: List[str] = []
    for host in hosts:
        if not document.has_host(host.alias):
            document.append_host(host)
            appended.append(host.alias)

    def results(status_for_appended: str, detail_for_appended: str) -> List[ActionOutcome]:
        return [
            outcome(h.alias, status_for_appended, detail_for_appended)
            if h.alias in appended
            else outcome(h.alias, OutcomeStatus.SKIPPED_ALREADY_SATISFIED, f"Host {h.alias} already in {path}")
            for h in hosts
        ]

    if not appended:
        return results(OutcomeStatus.SKIPPED_ALREADY_SATISFIED, "")

    if dry_run:
        return results(OutcomeStatus.WOULD_APPLY, f"would append to {path}")

    detail = f"appended to {path}"
    try:
        if not document.is_empty:
            backup = backup_file(path, now=now)
            detail += f" (backup {backup.name})"
        if not path.parent.exists():
            path.parent.mkdir(parents=True, mode=0o700)
        atomic_write(path, document.text, mode=0o600)
    except OSError as e:
        return results(OutcomeStatus.FAILED, f"cannot write {path}: {e}")

    logger.info(f"Added {len(appended)} host(s) to {path}: {', '.join(appended)}")
    return results(OutcomeStatus.APPLIED, detail)
