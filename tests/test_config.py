"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

from xobcat.config import XobcatSettings, database_url, load_settings


class TestSettings:
    def test_env_prefix(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("XOBCAT_STREAM_COUNT", "4")
        monkeypatch.setenv("XOBCAT_TIMEZONE", "Europe/London")
        monkeypatch.setenv("XOBCAT_DATA_DIR", str(tmp_path))

        settings = load_settings()
        assert settings.stream_count == 4
        assert settings.timezone == "Europe/London"
        assert settings.data_dir == tmp_path

    def test_none_overrides_fall_through(self, monkeypatch) -> None:
        monkeypatch.setenv("XOBCAT_GENERATE_SUMMARY", "false")
        assert load_settings(generate_summary=None).generate_summary is False
        assert load_settings(generate_summary=True).generate_summary is True

    def test_defaults(self, monkeypatch) -> None:
        for name in ("XOBCAT_STREAM_COUNT", "XOBCAT_SESSIONS_PER_STREAM", "XOBCAT_MAX_STREAMS"):
            monkeypatch.delenv(name, raising=False)
        settings = XobcatSettings(_env_file=None)  # type: ignore[call-arg]
        assert settings.stream_count == 8
        assert settings.sessions_per_stream == 4
        assert settings.max_streams == 8
        assert settings.conflict_similarity_cutoff == 1.0
        assert settings.conflict_review is True
        assert settings.conflict_review_batch_size == 10


class TestDatabaseUrl:
    def test_explicit_url(self, tmp_path: Path) -> None:
        settings = XobcatSettings(data_dir=tmp_path, database_url="sqlite://")
        assert database_url(settings) == "sqlite://"

    def test_default_file_in_data_dir(self, tmp_path: Path) -> None:
        settings = XobcatSettings(data_dir=tmp_path / "data", database_url="")
        url = database_url(settings)
        assert url == f"sqlite:///{tmp_path / 'data' / 'xobcat.db'}"
        assert (tmp_path / "data").is_dir()
