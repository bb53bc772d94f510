from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from rich.logging import RichHandler


def repo_root() -> Path:
    # Assumes this file lives at: repo/src/topic_timeline/config.py
    return Path(__file__).resolve().parents[2]


def load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True)
class AppConfig:
    env: str
    openai_api_key_present: bool
    openai_model: str
    openai_research_model: str
    request_timeout_s: float
    connect_timeout_s: float
    years_back: int
    max_events_per_year: int
    version_retry_attempts: int
    db_path: Path
    log_level: str
    settings: Dict[str, Any]

    def call_settings(self, name: str) -> Dict[str, Any]:
        """temperature / max_tokens for one named completion call (see configs/settings.yaml)."""
        calls = self.settings.get("completion", {}).get("calls", {})
        out = {"temperature": 0.7, "max_tokens": 3000}
        out.update(calls.get(name, {}) or {})
        return out


def default_config(**overrides: Any) -> AppConfig:
    """An AppConfig built from defaults only. Handy for tests and library use without files."""
    values: Dict[str, Any] = dict(
        env="local",
        openai_api_key_present=False,
        openai_model="gpt-4o-mini",
        openai_research_model="gpt-4o",
        request_timeout_s=90.0,
        connect_timeout_s=10.0,
        years_back=10,
        max_events_per_year=4,
        version_retry_attempts=5,
        db_path=Path("timelines.db"),
        log_level="INFO",
        settings={},
    )
    values.update(overrides)
    return AppConfig(**values)


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    load_dotenv(repo_root() / ".env")

    settings_path = settings_path or (repo_root() / "configs" / "settings.yaml")
    settings = load_yaml(settings_path)

    app = settings.get("app", {}) or {}
    completion = settings.get("completion", {}) or {}
    synthesis = settings.get("synthesis", {}) or {}
    store = settings.get("store", {}) or {}

    env = os.getenv("APP_ENV", app.get("env", "local"))
    log_level = os.getenv("LOG_LEVEL", app.get("log_level", "INFO"))

    openai_key = os.getenv("OPENAI_API_KEY", "")
    model = os.getenv("OPENAI_MODEL", "").strip() or completion.get("model", "gpt-4o-mini")
    research_model = os.getenv("OPENAI_RESEARCH_MODEL", "").strip() or completion.get("research_model", model)

    db_path = Path(os.getenv("TIMELINES_DB_PATH", "").strip() or store.get("db_path", "artifacts/timelines.db"))
    if not db_path.is_absolute():
        db_path = repo_root() / db_path

    years_back = int(synthesis.get("years_back", 10))
    if years_back < 1:
        raise ValueError("configs/settings.yaml: synthesis.years_back must be >= 1")

    return AppConfig(
        env=str(env),
        openai_api_key_present=bool(openai_key.strip()),
        openai_model=str(model),
        openai_research_model=str(research_model),
        request_timeout_s=float(completion.get("timeout_s", 90)),
        connect_timeout_s=float(completion.get("connect_timeout_s", 10)),
        years_back=years_back,
        max_events_per_year=int(synthesis.get("max_events_per_year", 4)),
        version_retry_attempts=int(store.get("version_retry_attempts", 5)),
        db_path=db_path,
        log_level=str(log_level).upper(),
        settings=settings,
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # the SDK logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
