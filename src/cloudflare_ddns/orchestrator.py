"""Builds and supervises one UpdateService per monitored record."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config import ConfigStore
from .errors import ConfigError, DDNSError, ForceUpdateError, NotFoundError
from .events import EventBus, Subscription
from .locks import ReadWriteLock
from .models import (
    AddressFamily,
    ControlEvent,
    EventKind,
    MonitoredRecordConfig,
    RecordStatus,
)
from .provider import DNSProvider
from .resolver import PublicIPResolver
from .state import StateStore
from .updater import DEFAULT_RECOVERY_INTERVAL_SECONDS, CycleCallback, UpdateService

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[MonitoredRecordConfig], DNSProvider]
ServiceKey = Tuple[str, AddressFamily]

# Every service loop, the config watcher and the event loop each hold a worker.
DEFAULT_MAX_WORKERS = 64
EVENT_POLL_SECONDS = 1.0


class Orchestrator:
    """Service factory and control-event dispatcher."""

    def __init__(
        self,
        config_store: ConfigStore,
        bus: EventBus,
        state_store: StateStore,
        resolver: PublicIPResolver,
        provider_factory: ProviderFactory,
        executor: Optional[Executor] = None,
        recovery_interval: float = DEFAULT_RECOVERY_INTERVAL_SECONDS,
        on_cycle: Optional[CycleCallback] = None,
    ):
        self.config_store = config_store
        self.bus = bus
        self.state_store = state_store
        self.resolver = resolver
        self.provider_factory = provider_factory
        self.recovery_interval = recovery_interval
        self.on_cycle = on_cycle

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=DEFAULT_MAX_WORKERS, thread_name_prefix="ddns"
        )
        self._lock = ReadWriteLock()
        self._services: Dict[ServiceKey, UpdateService] = {}
        self._subscription: Optional[Subscription] = None
        self._stopping = threading.Event()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, watch_config: bool = True) -> None:
        configs = self.config_store.load()
        if not configs:
            logger.warning("No DDNS records configured")
        self._replace_services(configs)

        self._stopping.clear()
        self._subscription = self.bus.subscribe(
            EventKind.RESTART_ALL, EventKind.FORCE_UPDATE, EventKind.CONFIG_CHANGED
        )
        self.executor.submit(self._event_loop, self._subscription)
        if watch_config:
            self.config_store.watch(self.executor)

    def stop(self) -> None:
        logger.info("Stopping DDNS services")
        self._stopping.set()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self.config_store.stop_watching()

        with self._lock.write():
            old, self._services = self._services, {}
        for service in old.values():
            service.stop()

        if self._owns_executor:
            self.executor.shutdown(wait=False)

    def _event_loop(self, subscription: Subscription) -> None:
        logger.debug("Event loop started")
        while not self._stopping.is_set() and not subscription.closed:
            event = subscription.get(timeout=EVENT_POLL_SECONDS)
            if event is None:
                continue
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(f"Failed to handle {event.kind.value} event: {e}", exc_info=True)
        logger.debug("Event loop stopped")

    def handle_event(self, event: ControlEvent) -> None:
        if event.kind is EventKind.CONFIG_CHANGED:
            try:
                configs = self.config_store.load()
            except ConfigError as e:
                logger.error(f"Failed to reload configuration: {e}")
                logger.warning("Continuing with previous configuration")
                return
            logger.info(f"Configuration changed, restarting with {len(configs)} record(s)")
            self._replace_services(configs)

        elif event.kind is EventKind.RESTART_ALL:
            configs = [service.current_config() for service in self.services()]
            logger.info(f"Restarting {len(configs)} DDNS service(s)")
            self._replace_services(configs)

        elif event.kind is EventKind.FORCE_UPDATE:
            services = self._find(event.payload)
            if not services:
                logger.warning(f"Force update: no service for record {event.payload}")
                return
            for service in services:
                service.request_force_update()

    # =========================================================================
    # Services
    # =========================================================================

    def services(self) -> List[UpdateService]:
        with self._lock.read():
            return list(self._services.values())

    def _find(self, record_name: Optional[str]) -> List[UpdateService]:
        with self._lock.read():
            if record_name is None:
                return list(self._services.values())
            return [s for s in self._services.values() if s.name == record_name]

    def _build(self, config: MonitoredRecordConfig) -> UpdateService:
        return UpdateService(
            config,
            resolver=self.resolver,
            provider=self.provider_factory(config),
            state_store=self.state_store,
            recovery_interval=self.recovery_interval,
            on_cycle=self.on_cycle,
        )

    def _replace_services(self, configs: List[MonitoredRecordConfig]) -> None:
        fresh: Dict[ServiceKey, UpdateService] = {}
        for config in configs:
            if config.key in fresh:
                logger.warning(f"Ignoring duplicate config for {config.record_name}")
                continue
            try:
                fresh[config.key] = self._build(config)
            except DDNSError as e:
                logger.error(f"Cannot start DDNS service for {config.record_name}: {e}")

        with self._lock.write():
            old, self._services = self._services, fresh
        for service in old.values():
            service.stop()

        for service in fresh.values():
            self.executor.submit(service.run_forever)
        logger.info(f"Running {len(fresh)} DDNS service(s)")

    # =========================================================================
    # Administrative Calls
    # =========================================================================

    def get_configs(self) -> List[MonitoredRecordConfig]:
        return self.config_store.configs()

    def save_configs(self, configs: List[MonitoredRecordConfig]) -> None:
        self.config_store.save(configs)

    def validate_config(
        self, config: Union[MonitoredRecordConfig, Dict[str, Any]]
    ) -> MonitoredRecordConfig:
        if isinstance(config, dict):
            return MonitoredRecordConfig.from_dict(config)
        config.validate()
        return config

    def get_status(self, record_name: Optional[str] = None) -> List[RecordStatus]:
        statuses = []
        for service in self._find(record_name):
            config = service.current_config()
            state = service.last_applied_state()
            statuses.append(
                RecordStatus(
                    record_name=config.record_name,
                    ip_type=config.ip_type,
                    current_address=state.last_known_address,
                    last_update_time=state.last_update_time,
                )
            )
        return statuses

    def force_update(self, record_name: Optional[str] = None) -> List[Tuple[str, str]]:
        """Run a forced cycle for one record (or all) and return what was applied.

        Every matching service is attempted even when an earlier one fails. A
        single failing service re-raises its own error; several services with
        any failure raise ForceUpdateError carrying both outcomes.
        """
        services = self._find(record_name)
        if record_name is not None and not services:
            raise NotFoundError(f"No DDNS service for record {record_name}")

        if len(services) == 1:
            return [services[0].force_update()]

        applied: List[Tuple[str, str]] = []
        failures: List[Tuple[str, DDNSError]] = []
        for service in services:
            try:
                applied.append(service.force_update())
            except DDNSError as e:
                logger.error(f"Forced update of {service.name} failed: {e}")
                failures.append((service.name, e))

        if failures:
            raise ForceUpdateError(applied, failures)
        return applied

    def restart_all(self) -> None:
        self.bus.restart_all()

    def current_ip(self, ip_type: Any = AddressFamily.IPV4) -> str:
        return self.resolver.resolve(AddressFamily.parse(ip_type))
