"""SSH key provisioning. Never regenerates or overwrites existing key material."""
import getpass
import os
import socket
from pathlib import Path
from typing import Optional

from homestead.core.command import CommandRunner
from homestead.core.logger import get_logger
from homestead.core.report import ActionOutcome, OutcomeStatus, Phase
from homestead.models.manifest import SSHIdentity

logger = get_logger(__name__)

SSH_KEY_TARGET = "ssh-key"


def _default_comment() -> str:
    try:
        return f"{getpass.getuser()}@{socket.gethostname()}"
    except (KeyError, OSError):
        return socket.gethostname()


def ensure_ssh_dir(path: Path) -> bool:
    """Create ``path`` with owner-only permissions if missing.

    Returns:
        True if the directory was created
    """
    if path.is_dir():
        return False
    path.mkdir(parents=True, mode=0o700)
    os.chmod(path, 0o700)  # mkdir mode is filtered by umask
    logger.info(f"Created {path}")
    return True


def provision_ssh_key(
    identity: SSHIdentity,
    runner: Optional[CommandRunner] = None,
    dry_run: bool = False,
    timeout: Optional[float] = None,
) -> ActionOutcome:
    """Make sure a key pair exists at ``identity.path``.

    Existing key material is left untouched. A missing pair is generated
    with ``ssh-keygen`` and an empty passphrase.
    """
    runner = runner or CommandRunner()
    key_path = Path(identity.path).expanduser()
    public_path = key_path.with_name(key_path.name + ".pub")

    def outcome(status: str, detail: str) -> ActionOutcome:
        return ActionOutcome(SSH_KEY_TARGET, status, detail, required=True, phase=Phase.IDENTITY)

    try:
        key_exists = key_path.exists()
        public_exists = public_path.exists()
    except OSError as e:
        return outcome(OutcomeStatus.FAILED, f"cannot inspect {key_path}: {e}")

    if key_exists:
        return outcome(OutcomeStatus.SKIPPED_ALREADY_SATISFIED, f"key exists at {key_path}")

    if public_exists:
        # ssh-keygen would silently replace the orphaned public half
        return outcome(
            OutcomeStatus.FAILED,
            f"{public_path} exists without its private key; move it aside and rerun",
        )

    if dry_run:
        return outcome(OutcomeStatus.WOULD_APPLY, f"would generate {identity.algorithm} key at {key_path}")

    try:
        ensure_ssh_dir(key_path.parent)
    except OSError as e:
        return outcome(OutcomeStatus.FAILED, f"cannot create {key_path.parent}: {e}")

    result = runner.run(
        [
            "ssh-keygen",
            "-t", identity.algorithm,
            "-f", str(key_path),
            "-N", "",
            "-q",
            "-C", identity.comment or _default_comment(),
        ],
        timeout=timeout,
    )
    if not result.ok:
        return outcome(OutcomeStatus.FAILED, result.diagnostic())
    try:
        generated = key_path.exists()
    except OSError as e:
        return outcome(OutcomeStatus.FAILED, f"cannot inspect {key_path}: {e}")
    if not generated:
        return outcome(OutcomeStatus.FAILED, f"ssh-keygen succeeded but {key_path} is missing")

    logger.info(f"Generated {identity.algorithm} key at {key_path}")
    return outcome(OutcomeStatus.APPLIED, f"generated {identity.algorithm} key at {key_path}")
