"""Atomic file replacement and timestamped backups."""
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from homestead.core.logger import get_logger

logger = get_logger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def atomic_write(path: Path, data: Union[str, bytes], mode: int = 0o644) -> None:
    """Replace ``path`` with ``data`` so readers see either old or new content.

    Writes to a temp file in the same directory, fsyncs, applies ``mode``
    and renames over the target. The temp file is removed on any failure.
    A symlinked ``path`` keeps its link; the file it points to is replaced.
    """
    path = Path(path)
    if path.is_symlink():
        path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode() if isinstance(data, str) else data

    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise
    logger.debug(f"Wrote {path} ({len(payload)} bytes)")


def backup_path_for(path: Path, now: Optional[datetime] = None) -> Path:
    """Return an unused ``<name>.backup.<timestamp>`` path next to ``path``.

    Two backups in the same second get ``.1``, ``.2``, ... appended.
    """
    path = Path(path)
    stamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    candidate = path.with_name(f"{path.name}.backup.{stamp}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.backup.{stamp}.{counter}")
        counter += 1
    return candidate


def backup_file(path: Path, now: Optional[datetime] = None) -> Path:
    """Copy ``path`` verbatim (content and mode) to a fresh backup path."""
    target = backup_path_for(path, now=now)
    shutil.copy2(path, target)
    logger.info(f"Backed up {path} to {target}")
    return target
