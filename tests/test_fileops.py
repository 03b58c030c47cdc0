"""Tests for atomic writes, backups and downloads."""
import os
import stat
import sys
from datetime import datetime

import pytest
import requests

from homestead.core.command import CommandRunner
from homestead.core.download import download_file, fetch_bytes
from homestead.core.fileops import atomic_write, backup_file, backup_path_for
from homestead.models.errors import ActionFailed


class TestAtomicWrite:
    def test_replaces_content_and_mode(self, tmp_path):
        path = tmp_path / "config"
        path.write_text("old")

        atomic_write(path, "new", mode=0o600)

        assert path.read_text() == "new"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert [p.name for p in tmp_path.iterdir()] == ["config"]

    def test_failure_leaves_original_and_no_temp_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config"
        path.write_text("old")

        def broken_replace(src, dst):
            raise OSError("rename failed")

        monkeypatch.setattr("homestead.core.fileops.os.replace", broken_replace)

        with pytest.raises(OSError):
            atomic_write(path, "new")

        assert path.read_text() == "old"
        assert [p.name for p in tmp_path.iterdir()] == ["config"]

    def test_symlink_is_kept(self, tmp_path):
        target = tmp_path / "real"
        target.write_text("old")
        link = tmp_path / "link"
        link.symlink_to(target)

        atomic_write(link, "new")

        assert link.is_symlink()
        assert target.read_text() == "new"


class TestBackups:
    def test_backup_name(self, tmp_path):
        path = tmp_path / "config"

        assert backup_path_for(path, now=datetime(2024, 12, 31, 23, 59, 58)).name == "config.backup.20241231235958"

    def test_backup_copies_verbatim(self, tmp_path):
        path = tmp_path / "config"
        path.write_text("Host a\n")

        backup = backup_file(path, now=datetime(2024, 1, 1))

        assert backup.read_text() == "Host a\n"
        assert path.read_text() == "Host a\n"


class FakeResponse:
    def __init__(self, chunks, status=200):
        self.chunks = chunks
        self.status = status
        self.content = b"".join(chunk for chunk in chunks if isinstance(chunk, bytes))

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Client Error")

    def iter_content(self, chunk_size=None):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestDownload:
    def test_download_executable(self, tmp_path, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda url, **kwargs: FakeResponse([b"#!/bin/bash\n", b"echo hi\n"]))
        dest = tmp_path / "bin" / "pico_setup.sh"

        download_file("https://example.com/pico_setup.sh", dest, executable=True)

        assert dest.read_bytes() == b"#!/bin/bash\necho hi\n"
        assert stat.S_IMODE(os.stat(dest).st_mode) == 0o755

    def test_interrupted_download_leaves_nothing(self, tmp_path, monkeypatch):
        chunks = [b"partial", requests.ConnectionError("connection reset")]
        monkeypatch.setattr(requests, "get", lambda url, **kwargs: FakeResponse(chunks))
        dest = tmp_path / "arduino-ide.AppImage"

        with pytest.raises(ActionFailed, match="Download failed"):
            download_file("https://example.com/arduino.AppImage", dest)

        assert list(tmp_path.iterdir()) == []

    def test_http_error(self, tmp_path, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda url, **kwargs: FakeResponse([], status=404))

        with pytest.raises(ActionFailed) as exc_info:
            download_file("https://example.com/missing", tmp_path / "missing")

        assert "404" in exc_info.value.detail()

    def test_fetch_bytes(self, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda url, **kwargs: FakeResponse([b"KEY"]))

        assert fetch_bytes("https://example.com/key.asc") == b"KEY"


class TestCommandRunner:
    """Real subprocesses, using the test interpreter as the command."""

    def test_captures_output(self):
        result = CommandRunner().run([sys.executable, "-c", "print('hello')"])

        assert result.ok
        assert result.stdout.strip() == "hello"

    def test_failure_diagnostic(self):
        result = CommandRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom\\n'); sys.exit(3)"]
        )

        assert not result.ok
        assert result.returncode == 3
        assert result.diagnostic().startswith("exit 3: ")
        assert result.diagnostic().endswith("boom")

    def test_timeout(self):
        result = CommandRunner(default_timeout=0.5).run([sys.executable, "-c", "import time; time.sleep(5)"])

        assert result.timed_out
        assert not result.ok
        assert result.diagnostic().startswith("timed out")

    def test_missing_binary(self):
        result = CommandRunner().run(["homestead-no-such-binary"])

        assert not result.ok
        assert result.returncode is None
        assert "could not start" in result.diagnostic()
