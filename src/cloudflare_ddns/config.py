"""Monitored-record configuration: durable storage, environment fallback, watching.

The storage file holds a list of record configs::

    [
      {
        "api_token": "...",
        "zone_id": "...",
        "record_id": "...",
        "record_name": "home.example.com",
        "update_interval": 300,
        "ip_type": "ipv4"
      }
    ]

Files ending in ``.yaml``/``.yml`` are read and written as YAML, anything
else as JSON. A missing file is an empty list.

Environment variables (used only while storage holds no configs):

    IPv4 record:
        CLOUDFLARE_API_TOKEN       API token
        CLOUDFLARE_ZONE_ID         Zone ID
        CLOUDFLARE_RECORD_ID       Record ID
        CLOUDFLARE_RECORD_NAME     Record name
        DDNS_UPDATE_INTERVAL       Poll interval in seconds (default: 300)

    IPv6 record (token, zone and interval fall back to the IPv4 values):
        CLOUDFLARE_API_TOKEN_V6
        CLOUDFLARE_ZONE_ID_V6
        CLOUDFLARE_RECORD_ID_V6    (required)
        CLOUDFLARE_RECORD_NAME_V6  (required)
        DDNS_UPDATE_INTERVAL_V6
"""

from __future__ import annotations

import json
import logging
import os
import threading
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import yaml

from .errors import ConfigError, NotFoundError, ValidationError
from .events import EventBus
from .locks import ReadWriteLock
from .models import DEFAULT_UPDATE_INTERVAL, AddressFamily, MonitoredRecordConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/ddns.json"
DEFAULT_WATCH_INTERVAL_SECONDS = 5.0


# =============================================================================
# Parsing Utilities
# =============================================================================


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in {".yaml", ".yml"}


def parse_configs(text: str, *, as_yaml: bool, strict: bool = True) -> List[MonitoredRecordConfig]:
    """Parse a document holding one config object or a list of them.

    With ``strict=False`` invalid entries are logged and skipped instead of
    raising ValidationError.
    """
    if not text.strip():
        return []
    try:
        data = yaml.safe_load(text) if as_yaml else json.loads(text)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Failed to parse config document: {e}") from e

    if data is None:
        return []
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ConfigError(f"Config document must be a list, got {type(data).__name__}")

    configs: List[MonitoredRecordConfig] = []
    seen = set()
    for i, entry in enumerate(data):
        try:
            config = MonitoredRecordConfig.from_dict(entry)
        except ValidationError as e:
            if strict:
                raise ValidationError(f"Configuration[{i}]: {e.message}") from e
            logger.warning(f"Skipping invalid configuration[{i}]: {e.message}")
            continue
        if config.key in seen:
            if strict:
                raise ValidationError(
                    f"Configuration[{i}]: duplicate {config.ip_type.value} record {config.record_name}"
                )
            logger.warning(
                f"Skipping duplicate configuration[{i}] for {config.record_name} ({config.ip_type.value})"
            )
            continue
        seen.add(config.key)
        configs.append(config)
    return configs


def _env(environ: Mapping[str, str], name: str) -> str:
    return (environ.get(name) or "").strip()


def configs_from_env(environ: Mapping[str, str]) -> List[MonitoredRecordConfig]:
    """Build record configs from CLOUDFLARE_* / DDNS_* environment variables."""
    configs: List[MonitoredRecordConfig] = []

    token = _env(environ, "CLOUDFLARE_API_TOKEN")
    zone_id = _env(environ, "CLOUDFLARE_ZONE_ID")
    interval = _env(environ, "DDNS_UPDATE_INTERVAL") or str(DEFAULT_UPDATE_INTERVAL)

    candidates = [
        (
            "IPv4",
            {
                "api_token": token,
                "zone_id": zone_id,
                "record_id": _env(environ, "CLOUDFLARE_RECORD_ID"),
                "record_name": _env(environ, "CLOUDFLARE_RECORD_NAME"),
                "update_interval": interval,
                "ip_type": AddressFamily.IPV4.value,
            },
        ),
        (
            "IPv6",
            {
                "api_token": _env(environ, "CLOUDFLARE_API_TOKEN_V6") or token,
                "zone_id": _env(environ, "CLOUDFLARE_ZONE_ID_V6") or zone_id,
                "record_id": _env(environ, "CLOUDFLARE_RECORD_ID_V6"),
                "record_name": _env(environ, "CLOUDFLARE_RECORD_NAME_V6"),
                "update_interval": _env(environ, "DDNS_UPDATE_INTERVAL_V6") or interval,
                "ip_type": AddressFamily.IPV6.value,
            },
        ),
    ]

    for label, data in candidates:
        if not data["record_id"] and not data["record_name"]:
            logger.debug(f"No {label} record configured in environment")
            continue
        try:
            configs.append(MonitoredRecordConfig.from_dict(data))
            logger.info(f"{label} DDNS record configured from environment")
        except ValidationError as e:
            logger.warning(f"Unable to configure {label} DDNS record from environment: {e.message}")
    return configs


# =============================================================================
# Config Store
# =============================================================================


class ConfigStore:
    """Owns the monitored-record list and its storage file."""

    def __init__(
        self,
        path: str = DEFAULT_CONFIG_PATH,
        bus: Optional[EventBus] = None,
        environ: Optional[Mapping[str, str]] = None,
        poll_interval: float = DEFAULT_WATCH_INTERVAL_SECONDS,
    ):
        self.path = Path(path)
        self.bus = bus
        self.poll_interval = poll_interval
        self._environ = environ if environ is not None else os.environ
        self._cache_lock = ReadWriteLock()
        self._configs: List[MonitoredRecordConfig] = []
        # Serializes read-modify-write edits and file writes.
        self._edit_lock = threading.RLock()
        # Guards the last-seen modification time shared with the watcher.
        self._mtime_lock = threading.Lock()
        self._last_seen: Optional[int] = None
        self._baseline_taken = False
        self._stop_event = threading.Event()
        self._watch_thread: Optional[threading.Thread] = None

    # =========================================================================
    # Loading and Saving
    # =========================================================================

    def load(self) -> List[MonitoredRecordConfig]:
        """Read storage, falling back to (and persisting) environment configs."""
        with self._edit_lock:
            with self._mtime_lock:
                configs = self._read_storage()
                self._remember_mtime()

            if not configs:
                configs = configs_from_env(self._environ)
                if configs:
                    logger.info(
                        f"Config storage empty, persisting {len(configs)} record(s) from environment to {self.path}"
                    )
                    self._write(configs)

            with self._cache_lock.write():
                self._configs = list(configs)

        logger.info(f"Loaded {len(configs)} DDNS configuration(s)")
        return list(configs)

    def configs(self) -> List[MonitoredRecordConfig]:
        """Last loaded or saved configs, without touching storage."""
        with self._cache_lock.read():
            return list(self._configs)

    def save(self, configs: List[MonitoredRecordConfig]) -> None:
        """Validate and atomically replace the whole list, then notify once."""
        configs = list(configs)
        seen = set()
        for i, config in enumerate(configs):
            try:
                config.validate()
            except ValidationError as e:
                raise ValidationError(f"Configuration[{i}]: {e.message}") from e
            if config.key in seen:
                raise ValidationError(
                    f"Configuration[{i}]: duplicate {config.ip_type.value} record {config.record_name}"
                )
            seen.add(config.key)

        with self._edit_lock:
            self._write(configs)
            with self._cache_lock.write():
                self._configs = configs

        logger.info(f"Saved {len(configs)} DDNS configuration(s) to {self.path}")
        if self.bus is not None:
            self.bus.config_changed()

    def upsert(self, config: MonitoredRecordConfig) -> None:
        """Replace the config with the same record name and IP type, or append it."""
        config.validate()
        with self._edit_lock:
            configs = self.configs()
            for i, existing in enumerate(configs):
                if existing.key == config.key:
                    configs[i] = config
                    break
            else:
                configs.append(config)
            self.save(configs)

    def delete(self, record_name: str, ip_type: Any) -> None:
        family = AddressFamily.parse(ip_type)
        with self._edit_lock:
            configs = self.configs()
            remaining = [c for c in configs if c.key != (record_name, family)]
            if len(remaining) == len(configs):
                raise NotFoundError(
                    f"Config with name {record_name} and type {family.value} not found"
                )
            self.save(remaining)

    def import_file(self, path: str) -> List[MonitoredRecordConfig]:
        """Parse a YAML or JSON file of configs without touching storage."""
        source = Path(path)
        if not source.exists():
            raise ConfigError(f"Config file not found: {source}")
        try:
            text = source.read_text("utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read config file {source}: {e}") from e
        return parse_configs(text, as_yaml=_is_yaml(source))

    def _read_storage(self) -> List[MonitoredRecordConfig]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text("utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read config file {self.path}: {e}") from e
        return parse_configs(text, as_yaml=_is_yaml(self.path), strict=False)

    def _write(self, configs: List[MonitoredRecordConfig]) -> None:
        entries = [c.to_dict() for c in configs]
        if _is_yaml(self.path):
            text = yaml.safe_dump(entries, sort_keys=False, default_flow_style=False)
        else:
            text = json.dumps(entries, indent=2)

        with self._mtime_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp_path.write_text(text, "utf-8")
                tmp_path.replace(self.path)
            except OSError as e:
                raise ConfigError(f"Failed to write config file {self.path}: {e}") from e
            self._remember_mtime()

    # =========================================================================
    # Watching
    # =========================================================================

    def _current_mtime(self) -> Optional[int]:
        try:
            return self.path.stat().st_mtime_ns
        except OSError:
            return None

    def _remember_mtime(self) -> None:
        self._last_seen = self._current_mtime()
        self._baseline_taken = True

    def check_for_changes(self) -> bool:
        """One watcher poll. Publishes ConfigChanged once per detected transition."""
        with self._mtime_lock:
            current = self._current_mtime()
            if not self._baseline_taken:
                self._last_seen = current
                self._baseline_taken = True
                return False
            if current == self._last_seen:
                return False
            previous, self._last_seen = self._last_seen, current

        if current is None:
            logger.info(f"Config file removed: {self.path}")
        elif previous is None:
            logger.info(f"Config file created: {self.path}")
        else:
            logger.info(f"Config change detected in: {self.path.name}")

        try:
            configs = self._read_storage()
        except ConfigError as e:
            logger.error(f"Ignoring unreadable config change: {e}")
            return False
        with self._cache_lock.write():
            self._configs = configs

        if self.bus is not None:
            self.bus.config_changed()
        return True

    def run_watcher(self) -> None:
        """Poll the storage file until ``stop_watching`` is called."""
        logger.info(f"Config watch: enabled for {self.path} (every {self.poll_interval}s)")
        self.check_for_changes()
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.check_for_changes()
            except Exception as e:
                logger.error(f"Config watcher check failed: {e}", exc_info=True)
        logger.info("Config watcher stopped")

    def watch(self, executor: Optional[Executor] = None) -> Union[threading.Thread, Future]:
        """Start the watcher on ``executor``, or on its own daemon thread."""
        self._stop_event.clear()
        if executor is not None:
            return executor.submit(self.run_watcher)
        if self._watch_thread is not None and self._watch_thread.is_alive():
            return self._watch_thread
        self._watch_thread = threading.Thread(
            target=self.run_watcher, name="config-watcher", daemon=True
        )
        self._watch_thread.start()
        return self._watch_thread

    def stop_watching(self) -> None:
        self._stop_event.set()
