"""
Tests for the command line entry point.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from releasedesk.__main__ import main, parse_args
from releasedesk.core.release_db import ReleaseDb


def write_config(tmp_path: Path) -> Path:
    path = tmp_path / "releasedesk.toml"
    path.write_text('[storage]\ndb_path = "rd.sqlite3"\n', encoding="utf-8")
    return path


async def resolve(db_path: Path, token: str) -> tuple[str, str] | None:
    db = ReleaseDb(db_path)
    await db.open()
    try:
        user = await db.resolve_token(token)
        return None if user is None else (user.username, user.role)
    finally:
        await db.close()


class TestParseArgs:
    def test_defaults_to_serve(self) -> None:
        args = parse_args([])
        assert args.command == "serve"
        assert args.host is None
        assert args.port is None
        assert args.config is None

    def test_serve_options(self) -> None:
        args = parse_args(["-v", "serve", "--host", "0.0.0.0", "-p", "9000"])
        assert args.verbose
        assert args.host == "0.0.0.0"
        assert args.port == 9000

    def test_create_user_role_choices(self) -> None:
        args = parse_args(["create-user", "ops", "--role", "Operator"])
        assert args.username == "ops"
        assert args.role == "Operator"
        with pytest.raises(SystemExit):
            parse_args(["create-user", "ops", "--role", "Owner"])


class TestCreateUser:
    def test_prints_usable_token(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("RELEASEDESK_DB", raising=False)
        config = write_config(tmp_path)

        assert main(["-c", str(config), "create-user", "admin", "--role", "Admin"]) == 0
        token = capsys.readouterr().out.strip()

        assert asyncio.run(resolve(tmp_path / "rd.sqlite3", token)) == ("admin", "Admin")

    def test_existing_user_gets_new_token(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("RELEASEDESK_DB", raising=False)
        config = write_config(tmp_path)

        main(["-c", str(config), "create-user", "budi"])
        first = capsys.readouterr().out.strip()
        main(["-c", str(config), "create-user", "budi"])
        second = capsys.readouterr().out.strip()

        assert first != second
        assert asyncio.run(resolve(tmp_path / "rd.sqlite3", first)) == ("budi", "User")
        assert asyncio.run(resolve(tmp_path / "rd.sqlite3", second)) == ("budi", "User")

    def test_invalid_config(self, tmp_path: Path) -> None:
        assert main(["-c", str(tmp_path / "missing.toml"), "create-user", "x"]) == 2
