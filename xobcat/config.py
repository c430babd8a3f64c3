"""Application settings loaded from environment variables or .env."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_files() -> list[Path]:
    """Find .env files to load, searching upward from CWD and in the package dir.

    Checks (in priority order, last wins in pydantic-settings):
    1. The xobcat package directory (next to this file)
    2. The current working directory, or the first parent that has one
    """
    candidates: list[Path] = []

    pkg_env = Path(__file__).resolve().parent.parent / ".env"
    if pkg_env.is_file():
        candidates.append(pkg_env)

    cwd = Path.cwd().resolve()
    for parent in [cwd, *cwd.parents]:
        env_path = parent / ".env"
        if env_path.is_file() and env_path not in candidates:
            candidates.append(env_path)
            break  # stop at first match going upward

    return candidates


class XobcatSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="XOBCAT_",
        env_file=_find_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: Path = Path("~/.local/share/xobcat").expanduser()
    database_url: str = ""  # empty → sqlite file inside data_dir

    # Sampling
    timezone: str = "America/New_York"  # start date/time are entered in this zone
    min_messages_per_session: int = 2

    # Discovery
    discovery_batch_size: int = 5

    # Parallel processing
    stream_count: int = 8
    sessions_per_stream: int = 4
    max_streams: int = 8

    # Conflict resolution: 1.0 means exact (case-insensitive) matching only.
    # Below 1.0, near-spellings merge only when they differ by plural endings.
    conflict_similarity_cutoff: float = 1.0
    conflict_review: bool = True  # LLM review of candidate duplicates between rounds
    conflict_review_batch_size: int = 10  # candidate groups per LLM call

    # Summary
    generate_summary: bool = True

    # LLM
    llm_max_tokens: int = 8192
    llm_temperature: float = 0.0
    max_transcript_chars: int = 8000

    # Remote session source (optional)
    session_api_url: str = ""
    session_api_token: str = ""
    session_api_timeout: float = 60.0


def load_settings(**overrides: object) -> XobcatSettings:
    """Load settings with optional CLI overrides.

    ``None`` overrides are dropped so unset CLI flags fall through to the
    environment.
    """
    cleaned = {k: v for k, v in overrides.items() if v is not None}
    return XobcatSettings(**cleaned)  # type: ignore[arg-type]


def database_url(settings: XobcatSettings) -> str:
    """Return the configured database URL, defaulting to a file in data_dir."""
    if settings.database_url:
        return settings.database_url
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{settings.data_dir / 'xobcat.db'}"
