"""
Configuration loading for HubPanel
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

from .database.models import DatabaseConfig, EngineKind

# Load environment variables
load_dotenv()

MAX_DB_SLOTS = 10

DEFAULT_NOTIFY_OPERATIONS = "DROP_DATABASE,DROP_USER,IMPORT,REMOVE_CONNECTION"


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


def _get_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


@dataclass
class Settings:
    """Process-wide settings read from the environment"""
    connections_cache_ttl: float = 10.0
    pool_size: int = 10
    connect_timeout: int = 5
    query_timeout: int = 8
    dump_row_limit: int = 50000
    max_page_size: int = 1000
    metadata_url: Optional[str] = None
    log_level: str = "INFO"
    slack_webhook: Optional[str] = None
    telegram_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    notify_operations: List[str] = field(
        default_factory=lambda: DEFAULT_NOTIFY_OPERATIONS.split(",")
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables"""
        env = os.environ if environ is None else environ

        notify = env.get("HUBPANEL_NOTIFY_OPERATIONS", DEFAULT_NOTIFY_OPERATIONS)

        return cls(
            connections_cache_ttl=_get_float(env, "HUBPANEL_CONNECTIONS_TTL", 10.0),
            pool_size=_get_int(env, "HUBPANEL_POOL_SIZE", 10),
            connect_timeout=_get_int(env, "HUBPANEL_CONNECT_TIMEOUT", 5),
            query_timeout=_get_int(env, "HUBPANEL_QUERY_TIMEOUT", 8),
            dump_row_limit=_get_int(env, "HUBPANEL_DUMP_ROW_LIMIT", 50000),
            max_page_size=_get_int(env, "HUBPANEL_MAX_PAGE_SIZE", 1000),
            metadata_url=build_metadata_url(env),
            log_level=env.get("HUBPANEL_LOG_LEVEL", "INFO").upper(),
            slack_webhook=env.get("SLACK_WEBHOOK") or None,
            telegram_token=env.get("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=env.get("TELEGRAM_CHAT_ID") or None,
            notify_operations=[op.strip().upper() for op in notify.split(",") if op.strip()],
        )


def build_metadata_url(environ: Mapping[str, str]) -> Optional[str]:
    """SQLAlchemy URL of HubPanel's own database, or None when not configured"""
    host = environ.get("HUBPANEL_DB_HOST")
    if not host:
        return None

    from sqlalchemy.engine import URL

    url = URL.create(
        "postgresql+psycopg2",
        username=environ.get("HUBPANEL_DB_USER", "hubpanel"),
        password=environ.get("HUBPANEL_DB_PASSWORD", ""),
        host=host,
        port=_get_int(environ, "HUBPANEL_DB_PORT", 5432),
        database=environ.get("HUBPANEL_DB_NAME", "hubpanel"),
    )
    return url.render_as_string(hide_password=False)


def load_static_configs(environ: Optional[Mapping[str, str]] = None) -> List[DatabaseConfig]:
    """Read the DB_{i}_* slots into database configurations

    A slot is only used when its name, host, user and password are all set.
    """
    env = os.environ if environ is None else environ
    configs = []

    for i in range(1, MAX_DB_SLOTS + 1):
        name = env.get(f"DB_{i}_NAME")
        host = env.get(f"DB_{i}_HOST")
        user = env.get(f"DB_{i}_USER")
        password = env.get(f"DB_{i}_PASSWORD")

        if not (name and host and user and password):
            continue

        engine_kind = EngineKind.parse(env.get(f"DB_{i}_TYPE"))
        port = _get_int(env, f"DB_{i}_PORT", engine_kind.default_port)

        configs.append(DatabaseConfig(
            name=name,
            host=host,
            port=port,
            user=user,
            password=password,
            database=env.get(f"DB_{i}_DATABASE") or name,
            engine_kind=engine_kind,
            source="static",
        ))

    return configs


def next_free_slot(environ: Optional[Mapping[str, str]] = None) -> Optional[int]:
    """First DB_{i} slot without a name, or None when all are taken"""
    env = os.environ if environ is None else environ
    for i in range(1, MAX_DB_SLOTS + 1):
        if not env.get(f"DB_{i}_NAME"):
            return i
    return None


def slot_env_vars(slot: int, config: DatabaseConfig) -> Dict[str, str]:
    """Environment variables that would register a config in a slot"""
    return {
        f"DB_{slot}_NAME": config.name,
        f"DB_{slot}_HOST": config.host,
        f"DB_{slot}_PORT": str(config.port),
        f"DB_{slot}_USER": config.user,
        f"DB_{slot}_PASSWORD": config.password,
        f"DB_{slot}_TYPE": config.engine_kind.value,
    }
