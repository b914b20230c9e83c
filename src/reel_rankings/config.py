from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import os

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    import tomli as tomllib  # type: ignore

from dotenv import load_dotenv


@dataclass
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 5
    pool_timeout: int = 30


@dataclass
class ApiSettings:
    base_url: str = "http://127.0.0.1:8000"
    api_key: Optional[str] = None
    request_timeout_seconds: int = 10
    retry_limit: int = 2
    retry_backoff_seconds: float = 1.0


@dataclass
class RankingSettings:
    edge_step: float = 0.2
    min_score: float = 1.0
    max_score: float = 10.0
    first_score: float = 10.0
    reload_after_delete: bool = False
    partition_ttl_seconds: int = 300


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class Settings:
    database: DatabaseSettings
    api: ApiSettings = field(default_factory=ApiSettings)
    ranking: RankingSettings = field(default_factory=RankingSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    raw: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        api = dict(self.api.__dict__)
        if api.get("api_key"):
            api["api_key"] = "***"
        return {
            "database": self.database.__dict__,
            "api": api,
            "ranking": self.ranking.__dict__,
            "logging": self.logging.__dict__,
        }


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load configuration from TOML + environment variables."""
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parents[2] / "config" / "default.toml"

    data = _load_toml(config_path)
    database_cfg = data.get("database", {})
    api_cfg = data.get("api", {})
    ranking_cfg = data.get("ranking", {})
    logging_cfg = data.get("logging", {})

    db_settings = DatabaseSettings(
        url=os.getenv("DATABASE_URL", database_cfg.get("url", "sqlite:///reel_rankings.db")),
        echo=bool_from_env("DATABASE_ECHO", database_cfg.get("echo", False)),
        pool_size=int(os.getenv("DATABASE_POOL_SIZE", database_cfg.get("pool_size", 5))),
        pool_timeout=int(os.getenv("DATABASE_POOL_TIMEOUT", database_cfg.get("pool_timeout", 30))),
    )

    api_settings = ApiSettings(
        base_url=os.getenv("RANKINGS_API_URL", api_cfg.get("base_url", "http://127.0.0.1:8000")),
        api_key=os.getenv("RANKINGS_API_KEY", api_cfg.get("api_key")),
        request_timeout_seconds=int(
            os.getenv("RANKINGS_API_TIMEOUT", api_cfg.get("request_timeout_seconds", 10))
        ),
        retry_limit=int(os.getenv("RANKINGS_API_RETRY_LIMIT", api_cfg.get("retry_limit", 2))),
        retry_backoff_seconds=float(
            os.getenv("RANKINGS_API_RETRY_BACKOFF", api_cfg.get("retry_backoff_seconds", 1.0))
        ),
    )

    ranking_settings = RankingSettings(
        edge_step=float(os.getenv("RANKING_EDGE_STEP", ranking_cfg.get("edge_step", 0.2))),
        min_score=float(os.getenv("RANKING_MIN_SCORE", ranking_cfg.get("min_score", 1.0))),
        max_score=float(os.getenv("RANKING_MAX_SCORE", ranking_cfg.get("max_score", 10.0))),
        first_score=float(os.getenv("RANKING_FIRST_SCORE", ranking_cfg.get("first_score", 10.0))),
        reload_after_delete=bool_from_env(
            "RANKING_RELOAD_AFTER_DELETE", ranking_cfg.get("reload_after_delete", False)
        ),
        partition_ttl_seconds=int(
            os.getenv("RANKING_PARTITION_TTL", ranking_cfg.get("partition_ttl_seconds", 300))
        ),
    )

    logging_settings = LoggingSettings(
        level=os.getenv("LOG_LEVEL", logging_cfg.get("level", "INFO")).upper(),
    )

    return Settings(
        database=db_settings,
        api=api_settings,
        ranking=ranking_settings,
        logging=logging_settings,
        raw=data,
    )


def bool_from_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return bool(default)
    return value.lower() in {"1", "true", "yes", "on"}
