from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    DEFAULT_UDP_DATA_PORT,
    HISTORY_CAPACITY,
    MONITOR_INTERVAL_MS,
    PERMISSION_FALLBACK_DELAY_MS,
    STALE_THRESHOLD_MS,
    VISUALIZATION_WINDOW,
)

SERVER_DIR = Path(__file__).resolve().parents[1]
"""Root of the ``apps/server/`` package tree."""

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 8080},
    "monitor": {
        "stale_threshold_ms": STALE_THRESHOLD_MS,
        "monitor_interval_ms": MONITOR_INTERVAL_MS,
    },
    "history": {
        "capacity": HISTORY_CAPACITY,
        "visualization_window": VISUALIZATION_WINDOW,
    },
    "transport": {
        "data_listen": f"0.0.0.0:{DEFAULT_UDP_DATA_PORT}",
        "data_queue_maxsize": 1024,
        "auto_fallback_to_simulation": True,
        "permission_fallback_delay_ms": PERMISSION_FALLBACK_DELAY_MS,
    },
    "simulation": {
        "connect_delay_ms": 800,
        "humidity_dropout_s": 60.0,
        "spike_probability": 0.05,
    },
    "storage": {
        "session_db_path": "data/sessions.db",
        "export_dir": "data/exports",
        "persist_sessions": True,
    },
    "ui": {"push_hz": 10},
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _split_host_port(value: str) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if sep == "":
        raise ValueError(f"Expected HOST:PORT, got: {value!r}")
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Invalid port number in {value!r}: {port!r} is not an integer") from None


def _resolve_config_path(path_text: str, config_path: Path) -> Path:
    path = Path(path_text)
    if path.is_absolute():
        return path
    return config_path.resolve().parent / path


def _check_port(section: str, port: int) -> None:
    if not isinstance(port, int) or not (1 <= port <= 65535):
        raise ValueError(f"{section} must be 1-65535, got {port!r}")


def _clamp_min(section: str, obj: object, minimums: dict[str, float]) -> None:
    for field_name, minimum in minimums.items():
        val = getattr(obj, field_name)
        if val < minimum:
            LOGGER.warning(
                "%s.%s=%s is below minimum %s; clamped to %s",
                section,
                field_name,
                val,
                minimum,
                minimum,
            )
            setattr(obj, field_name, type(val)(minimum))


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int

    def __post_init__(self) -> None:
        _check_port("server.port", self.port)


@dataclass(slots=True)
class MonitorConfig:
    stale_threshold_ms: int
    monitor_interval_ms: int

    def __post_init__(self) -> None:
        _clamp_min("monitor", self, {"stale_threshold_ms": 1, "monitor_interval_ms": 10})


@dataclass(slots=True)
class HistoryConfig:
    capacity: int
    visualization_window: int

    def __post_init__(self) -> None:
        _clamp_min("history", self, {"capacity": 1, "visualization_window": 1})


@dataclass(slots=True)
class TransportConfig:
    data_host: str
    data_port: int
    data_queue_maxsize: int
    auto_fallback_to_simulation: bool
    permission_fallback_delay_ms: int

    def __post_init__(self) -> None:
        _check_port("transport.data_listen port", self.data_port)
        _clamp_min(
            "transport",
            self,
            {"data_queue_maxsize": 1, "permission_fallback_delay_ms": 0},
        )


@dataclass(slots=True)
class SimulationConfig:
    connect_delay_ms: int
    humidity_dropout_s: float | None
    spike_probability: float

    def __post_init__(self) -> None:
        _clamp_min("simulation", self, {"connect_delay_ms": 0, "spike_probability": 0.0})
        if self.spike_probability > 1.0:
            LOGGER.warning(
                "simulation.spike_probability=%s is above 1; clamped to 1",
                self.spike_probability,
            )
            self.spike_probability = 1.0


@dataclass(slots=True)
class StorageConfig:
    session_db_path: Path
    export_dir: Path
    persist_sessions: bool


@dataclass(slots=True)
class UIConfig:
    push_hz: int

    def __post_init__(self) -> None:
        _clamp_min("ui", self, {"push_hz": 1})


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    monitor: MonitorConfig
    history: HistoryConfig
    transport: TransportConfig
    simulation: SimulationConfig
    storage: StorageConfig
    ui: UIConfig
    config_path: Path


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or (SERVER_DIR / "config.yaml")
    path = path.resolve()
    merged = _deep_merge(DEFAULT_CONFIG, _read_config_file(path))

    data_host, data_port = _split_host_port(str(merged["transport"]["data_listen"]))
    dropout_raw = merged["simulation"].get("humidity_dropout_s")
    storage_cfg = merged["storage"]

    app_config = AppConfig(
        server=ServerConfig(
            host=str(merged["server"]["host"]),
            port=int(merged["server"]["port"]),
        ),
        monitor=MonitorConfig(
            stale_threshold_ms=int(merged["monitor"]["stale_threshold_ms"]),
            monitor_interval_ms=int(merged["monitor"]["monitor_interval_ms"]),
        ),
        history=HistoryConfig(
            capacity=int(merged["history"]["capacity"]),
            visualization_window=int(merged["history"]["visualization_window"]),
        ),
        transport=TransportConfig(
            data_host=data_host,
            data_port=data_port,
            data_queue_maxsize=int(merged["transport"]["data_queue_maxsize"]),
            auto_fallback_to_simulation=bool(merged["transport"]["auto_fallback_to_simulation"]),
            permission_fallback_delay_ms=int(merged["transport"]["permission_fallback_delay_ms"]),
        ),
        simulation=SimulationConfig(
            connect_delay_ms=int(merged["simulation"]["connect_delay_ms"]),
            humidity_dropout_s=float(dropout_raw) if dropout_raw is not None else None,
            spike_probability=float(merged["simulation"]["spike_probability"]),
        ),
        storage=StorageConfig(
            session_db_path=_resolve_config_path(str(storage_cfg["session_db_path"]), path),
            export_dir=_resolve_config_path(str(storage_cfg["export_dir"]), path),
            persist_sessions=bool(storage_cfg["persist_sessions"]),
        ),
        ui=UIConfig(push_hz=int(merged["ui"]["push_hz"])),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config=%s session_db_path=%s data_listen=%s:%d",
        app_config.config_path,
        app_config.storage.session_db_path,
        app_config.transport.data_host,
        app_config.transport.data_port,
    )
    return app_config
