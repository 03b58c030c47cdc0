"""HTTP downloads for installer scripts, keyrings and AppImages."""
import os
import tempfile
from pathlib import Path
from typing import Optional

import requests

from homestead.core.config import get_config
from homestead.core.logger import get_logger
from homestead.models.errors import ActionFailed

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


def fetch_bytes(url: str, timeout: Optional[float] = None) -> bytes:
    """Fetch a small resource (keyring, policy file) into memory.

    Raises:
        ActionFailed: On any network or HTTP error
    """
    timeout = timeout or get_config().download_timeout
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ActionFailed(f"Download failed: {url}", diagnostic=str(e)) from e
    return response.content


def download_file(url: str, dest: Path, executable: bool = False,
                  timeout: Optional[float] = None) -> Path:
    """Stream ``url`` into ``dest`` atomically.

    The body goes to a temp file next to ``dest`` and is renamed into place
    only once complete, so an interrupted download never leaves a truncated
    file behind for the install check to find.

    Raises:
        ActionFailed: On any network, HTTP or filesystem error
    """
    dest = Path(dest).expanduser()
    timeout = timeout or get_config().download_timeout
    logger.info(f"Downloading {url} -> {dest}")

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
    except OSError as e:
        raise ActionFailed(f"Cannot write to {dest.parent}", diagnostic=str(e)) from e

    try:
        with os.fdopen(fd, "wb") as f:
            with requests.get(url, stream=True, timeout=timeout) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        os.chmod(temp_name, 0o755 if executable else 0o644)
        os.replace(temp_name, dest)
    except (requests.RequestException, OSError) as e:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise ActionFailed(f"Download failed: {url}", diagnostic=str(e)) from e

    return dest
