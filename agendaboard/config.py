# agenda-board: configuration
# Override via agendaboard.yaml, $AGENDABOARD_CONFIG or $AGENDABOARD_DB.

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from agendaboard.appointments.book import AppointmentBook
from agendaboard.kanban.backend import BoardBackend
from agendaboard.kanban.board import BoardStore
from agendaboard.kanban.events import BoardEventBridge
from agendaboard.kanban.rest import DEFAULT_TIMEOUT, RestBoardBackend
from agendaboard.kanban.store import DEFAULT_DB_PATH, SqliteBoardBackend

CONFIG_PATH = Path("agendaboard.yaml")
LOG_FORMAT = "%(asctime)s [agendaboard] %(levelname)s: %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class SqliteBackendConfig:
    kind = "sqlite"
    db_path: str = str(DEFAULT_DB_PATH)


@dataclass
class RestBackendConfig:
    kind = "rest"
    url: str = ""
    api_key_env: str = "AGENDABOARD_API_KEY"
    timeout: float = DEFAULT_TIMEOUT


BackendConfig = Union[SqliteBackendConfig, RestBackendConfig]


@dataclass
class Config:
    """Runtime configuration for one tenant's board."""

    tenant_id: str = "default"
    log_level: str = "INFO"
    backend: BackendConfig = field(default_factory=SqliteBackendConfig)

    # Board behaviour
    optimistic_concurrency: bool = True

    # Appointment behaviour
    strict_transitions: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        cfg = cls()
        if "tenant_id" in data:
            cfg.tenant_id = str(data["tenant_id"])
        if "log_level" in data:
            level = str(data["log_level"]).upper()
            if level not in LOG_LEVELS:
                raise ConfigError(f"Unknown log_level: {data['log_level']}")
            cfg.log_level = level
        cfg.backend = _parse_backend(data.get("backend") or {})

        board = data.get("board") or {}
        if "optimistic_concurrency" in board:
            cfg.optimistic_concurrency = bool(board["optimistic_concurrency"])
        appointments = data.get("appointments") or {}
        if "strict_transitions" in appointments:
            cfg.strict_transitions = bool(appointments["strict_transitions"])
        return cfg

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults if it is missing."""
        cfg_path = Path(path or os.environ.get("AGENDABOARD_CONFIG") or CONFIG_PATH)
        data: Dict[str, Any] = {}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {cfg_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
        cfg = cls.from_dict(data)

        db_env = os.environ.get("AGENDABOARD_DB")
        if db_env and isinstance(cfg.backend, SqliteBackendConfig):
            cfg.backend.db_path = db_env
        return cfg


def _parse_backend(raw: Dict[str, Any]) -> BackendConfig:
    if not isinstance(raw, dict):
        raise ConfigError("backend must be a mapping with a 'kind' key")
    kind = raw.get("kind", "sqlite")
    if kind == "sqlite":
        return SqliteBackendConfig(
            db_path=str(Path(raw.get("db_path") or DEFAULT_DB_PATH).expanduser())
        )
    if kind == "rest":
        url = raw.get("url")
        if not url:
            raise ConfigError("backend.url is required when backend.kind is 'rest'")
        return RestBackendConfig(
            url=url,
            api_key_env=raw.get("api_key_env", "AGENDABOARD_API_KEY"),
            timeout=float(raw.get("timeout", DEFAULT_TIMEOUT)),
        )
    raise ConfigError(f"Unknown backend kind: {kind!r} (expected 'sqlite' or 'rest')")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_backend(cfg: Config) -> BoardBackend:
    """Instantiate the persistence collaborator described by cfg.backend."""
    if isinstance(cfg.backend, SqliteBackendConfig):
        return SqliteBoardBackend(cfg.backend.db_path)
    api_key = os.environ.get(cfg.backend.api_key_env)
    if not api_key:
        raise ConfigError(
            f"Environment variable {cfg.backend.api_key_env} is not set.\n"
            f"Set it:  export {cfg.backend.api_key_env}=your_api_key"
        )
    return RestBoardBackend(cfg.backend.url, api_key, timeout=cfg.backend.timeout)


def open_board(
    cfg: Config,
    events: Optional[BoardEventBridge] = None,
    load: bool = True,
) -> BoardStore:
    """Build a BoardStore for cfg.tenant_id, loaded unless load=False."""
    store = BoardStore(
        build_backend(cfg),
        cfg.tenant_id,
        events=events,
        optimistic_concurrency=cfg.optimistic_concurrency,
    )
    if load:
        store.reload()
    return store


def open_appointments(cfg: Config) -> AppointmentBook:
    return AppointmentBook(strict_transitions=cfg.strict_transitions)
