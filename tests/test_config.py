"""
Tests for TOML settings and environment overrides.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from releasedesk.config import ConfigError, load_settings
from releasedesk.core.backup import BackupSchedule


def write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "releasedesk.toml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


class TestLoadSettings:
    def test_packaged_defaults(self) -> None:
        settings = load_settings(env={})
        assert settings.server.host == "127.0.0.1"
        assert settings.server.port == 8080
        assert settings.uploads.max_bytes == 8 * 1024**3
        assert settings.uploads.preview_seconds == 60
        assert settings.workflow.strict_transitions is False
        assert settings.backup == BackupSchedule("none", "02:00")
        assert settings.auth.cookie_name == "auth_token"
        assert settings.storage.db_path == Path.cwd() / "releasedesk.sqlite3"

    def test_file_values(self, tmp_path: Path) -> None:
        path = write_config(
            tmp_path,
            """
            [server]
            port = 9000
            cors_origins = ["https://app.example.org"]

            [storage]
            db_path = "data/rd.sqlite3"
            upload_root = "/srv/uploads"

            [uploads]
            max_bytes = "500MB"
            preview_seconds = 30

            [workflow]
            strict_transitions = true

            [backup]
            frequency = "Weekly"
            time = "3:05"
            """,
        )
        settings = load_settings(path, env={})

        assert settings.server.port == 9000
        assert settings.server.cors_origins == ["https://app.example.org"]
        assert settings.storage.db_path == tmp_path / "data" / "rd.sqlite3"
        assert settings.storage.upload_root == Path("/srv/uploads")
        assert settings.uploads.max_bytes == 500 * 1024**2
        assert settings.uploads.preview_seconds == 30.0
        assert settings.workflow.strict_transitions is True
        assert settings.backup == BackupSchedule("weekly", "03:05")

    def test_environment_overrides(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "[server]\nport = 9000\n")
        settings = load_settings(
            path,
            env={
                "RELEASEDESK_PORT": "9100",
                "RELEASEDESK_DB": "/var/lib/rd.sqlite3",
                "UPLOAD_MAX_BYTES": "1048576",
                "RELEASEDESK_FFMPEG": "/opt/ffmpeg/bin/ffmpeg",
            },
        )
        assert settings.server.port == 9100
        assert settings.storage.db_path == Path("/var/lib/rd.sqlite3")
        assert settings.uploads.max_bytes == 1048576
        assert settings.transcoding.ffmpeg == "/opt/ffmpeg/bin/ffmpeg"

    @pytest.mark.parametrize(
        "body",
        [
            "[server]\nport = 70000\n",
            "[server]\nport = \"http\"\n",
            "[uploads]\nmax_bytes = \"huge\"\n",
            "[uploads]\npreview_seconds = 0\n",
            "[workflow]\nstrict_transitions = \"yes\"\n",
            "[backup]\nfrequency = \"hourly\"\n",
            "server = 1\n",
            "[server\n",
        ],
    )
    def test_invalid_values(self, tmp_path: Path, body: str) -> None:
        with pytest.raises(ConfigError):
            load_settings(write_config(tmp_path, body), env={})

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "absent.toml", env={})

    def test_invalid_environment(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_settings(write_config(tmp_path, ""), env={"RELEASEDESK_PORT": "abc"})
