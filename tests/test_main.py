"""Tests for the command-line entry point."""

import sys
from datetime import date
from pathlib import Path

import pytest

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.main import main, run_cleanup, run_rollup, run_with_storage
from homeboard.web.auth import decode_access_token


@pytest.fixture
def file_settings(settings_obj: Settings, tmp_path: Path) -> Settings:
    return settings_obj.model_copy(update={"database_path": str(tmp_path / "cli.db")})


async def test_run_with_storage_closes_after_failure(file_settings: Settings) -> None:
    seen: list[MarketplaceStorage] = []

    async def job(storage: MarketplaceStorage, mailer: object) -> None:
        seen.append(storage)
        assert mailer is not None
        raise RuntimeError("job failed")

    with pytest.raises(RuntimeError, match="job failed"):
        await run_with_storage(file_settings, job)
    assert seen and seen[0]._conn is None


async def test_rollup_prints_summary(
    file_settings: Settings, capsys: pytest.CaptureFixture[str]
) -> None:
    await run_rollup(file_settings, date(2025, 3, 2))
    out = capsys.readouterr().out
    assert '"date": "2025-03-02"' in out
    assert '"dau": 0' in out


async def test_cleanup_prints_counts(
    file_settings: Settings, capsys: pytest.CaptureFixture[str]
) -> None:
    await run_cleanup(file_settings)
    assert "impressions_deleted" in capsys.readouterr().out


class TestMain:
    def test_issue_token(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("HOMEBOARD_JWT_SECRET", "cli-secret")
        monkeypatch.setattr(sys, "argv", ["homeboard", "--issue-token", "user-42"])
        main()
        token = capsys.readouterr().out.strip()
        settings = Settings(jwt_secret="cli-secret")
        assert decode_access_token(token, settings)["sub"] == "user-42"

    def test_issue_token_without_secret(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("HOMEBOARD_JWT_SECRET", raising=False)
        monkeypatch.setattr(sys, "argv", ["homeboard", "--issue-token", "user-42"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "HOMEBOARD_JWT_SECRET" in capsys.readouterr().err

    def test_no_arguments_prints_help(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr(sys, "argv", ["homeboard"])
        main()
        assert "--serve" in capsys.readouterr().out
