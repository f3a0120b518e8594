from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

MIN_JOBS = 1
MAX_JOBS = 100


class ConfigError(ValueError):
    pass


@dataclass(slots=True)
class ToolsConfig:
    pg_dump: str = "pg_dump"
    pg_restore: str = "pg_restore"
    psql: str = "psql"


@dataclass(slots=True)
class DatabaseConfig:
    dbname: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None

    def connection_args(self) -> list[str]:
        args: list[str] = []
        if self.host:
            args.extend(["-h", self.host])
        if self.port is not None:
            args.extend(["-p", str(self.port)])
        if self.user:
            args.extend(["-U", self.user])
        if self.dbname:
            args.extend(["-d", self.dbname])
        return args


@dataclass(slots=True)
class PoolConfig:
    jobs: int = 4
    max_wait_seconds: float = 1.0


@dataclass(slots=True)
class AppConfig:
    output_dir: Path
    compressor: str | None = None
    max_size_kb: int = 10240
    pool: PoolConfig = field(default_factory=PoolConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @property
    def manifest_path(self) -> Path:
        return self.output_dir / "index.lst"

    @property
    def log_path(self) -> Path:
        return self.output_dir / "chunkdump.log"

    @property
    def schema_dump_path(self) -> Path:
        return self.output_dir / "schema.dump"


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ConfigError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _as_int(value: object, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"`{name}` must be an integer")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"`{name}` must be an integer") from exc


def _as_float(value: object, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"`{name}` must be a number")
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"`{name}` must be a number") from exc


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read config {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")

    tools_raw = raw.get("tools", {})
    database_raw = raw.get("database", {})
    poll_raw = raw.get("poll", {})
    if not isinstance(tools_raw, dict):
        raise ConfigError("`tools` must be a mapping")
    if not isinstance(database_raw, dict):
        raise ConfigError("`database` must be a mapping")
    if not isinstance(poll_raw, dict):
        raise ConfigError("`poll` must be a mapping")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    def to_tool(value: object) -> str:
        text = str(value)
        if os.sep in text:
            return str(to_path(text))
        return text

    compressor_raw = raw.get("compressor")
    pool = PoolConfig(
        jobs=_as_int(raw.get("jobs", 4), "jobs"),
        max_wait_seconds=_as_float(poll_raw.get("max_wait_seconds", 1.0), "poll.max_wait_seconds"),
    )
    if not MIN_JOBS <= pool.jobs <= MAX_JOBS:
        raise ConfigError(f"`jobs` must be between {MIN_JOBS} and {MAX_JOBS}")
    if pool.max_wait_seconds <= 0:
        raise ConfigError("`poll.max_wait_seconds` must be > 0")

    max_size_kb = _as_int(raw.get("max_size_kb", 10240), "max_size_kb")
    if max_size_kb < 1:
        raise ConfigError("`max_size_kb` must be >= 1")

    port_raw = database_raw.get("port")
    database = DatabaseConfig(
        dbname=str(database_raw["dbname"]) if database_raw.get("dbname") else None,
        host=str(database_raw["host"]) if database_raw.get("host") else None,
        port=_as_int(port_raw, "database.port") if port_raw is not None else None,
        user=str(database_raw["user"]) if database_raw.get("user") else None,
    )

    return AppConfig(
        output_dir=to_path(_require(raw, "output_dir", "root")),
        compressor=to_tool(compressor_raw) if compressor_raw else None,
        max_size_kb=max_size_kb,
        pool=pool,
        tools=ToolsConfig(
            pg_dump=to_tool(tools_raw.get("pg_dump", "pg_dump")),
            pg_restore=to_tool(tools_raw.get("pg_restore", "pg_restore")),
            psql=to_tool(tools_raw.get("psql", "psql")),
        ),
        database=database,
    )


def _resolve_executable(command: str, name: str) -> str:
    if os.sep in command:
        candidate = Path(command)
        if not candidate.is_file() or not os.access(candidate, os.X_OK):
            raise ConfigError(f"`{name}` is not an executable file: {command}")
        return str(candidate)
    found = shutil.which(command)
    if found is None:
        raise ConfigError(f"`{name}` not found in PATH: {command}")
    return found


def validate_config(config: AppConfig) -> None:
    output_dir = config.output_dir
    if not output_dir.exists():
        raise ConfigError(f"Output directory does not exist: {output_dir}")
    if not output_dir.is_dir():
        raise ConfigError(f"Output path is not a directory: {output_dir}")
    if not os.access(output_dir, os.W_OK | os.X_OK):
        raise ConfigError(f"Output directory is not writable: {output_dir}")

    if not MIN_JOBS <= config.pool.jobs <= MAX_JOBS:
        raise ConfigError(f"`jobs` must be between {MIN_JOBS} and {MAX_JOBS}")
    if config.max_size_kb < 1:
        raise ConfigError("`max_size_kb` must be >= 1")

    config.tools.pg_dump = _resolve_executable(config.tools.pg_dump, "tools.pg_dump")
    config.tools.pg_restore = _resolve_executable(config.tools.pg_restore, "tools.pg_restore")
    config.tools.psql = _resolve_executable(config.tools.psql, "tools.psql")
    if config.compressor is not None:
        config.compressor = _resolve_executable(config.compressor, "compressor")
