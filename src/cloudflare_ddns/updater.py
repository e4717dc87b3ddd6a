"""Per-record update loop: resolve the public address, decide, write."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Tuple

from .errors import DDNSError, ResolveError, ServiceStoppedError
from .models import (
    DEFAULT_TTL,
    CycleResult,
    CycleStatus,
    DnsRecord,
    MonitoredRecordConfig,
    RecordState,
    UpdateOutcome,
)
from .provider import DNSProvider
from .resolver import PublicIPResolver
from .state import StateStore

logger = logging.getLogger(__name__)

DEFAULT_RECOVERY_INTERVAL_SECONDS = 60.0

CycleCallback = Callable[["UpdateService", CycleResult], None]


class UpdateService:
    """Keeps one DNS record pointed at the host's public address.

    ``run_forever`` loops until ``stop`` is called: one cycle, then a sleep of
    ``update_interval`` seconds (or the recovery interval after a failed
    address lookup). A forced update wakes the sleep early. Cycles never
    overlap; the loop and ``force_update`` share the cycle lock.
    """

    def __init__(
        self,
        config: MonitoredRecordConfig,
        resolver: PublicIPResolver,
        provider: DNSProvider,
        state_store: StateStore,
        recovery_interval: float = DEFAULT_RECOVERY_INTERVAL_SECONDS,
        on_cycle: Optional[CycleCallback] = None,
    ):
        self._config = config
        self.resolver = resolver
        self.provider = provider
        self.state_store = state_store
        self.recovery_interval = recovery_interval
        self.on_cycle = on_cycle

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._force_requested = threading.Event()
        self._last_cycle: Optional[CycleResult] = None

    def __repr__(self) -> str:
        return f"UpdateService({self.name!r}, {self._config.ip_type.value})"

    @property
    def name(self) -> str:
        return self._config.record_name

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    def current_config(self) -> MonitoredRecordConfig:
        return self._config

    def last_applied_state(self) -> RecordState:
        return self.state_store.get(self._config.state_key)

    def last_cycle(self) -> Optional[CycleResult]:
        return self._last_cycle

    def current_remote_address(self) -> str:
        """Read the record back from the provider, outside the poll cycle."""
        record = self.provider.get_record(self._config.zone_id, self._config.record_id)
        return record.content

    # =========================================================================
    # Cycles
    # =========================================================================

    def run_cycle(self, force: bool = False) -> UpdateOutcome:
        """One resolve/decide/write pass. Raises on resolver or provider failure."""
        with self._cycle_lock:
            try:
                outcome = self._cycle(force)
            except DDNSError as e:
                self._finish(CycleResult(CycleStatus.ERROR, error=str(e), forced=force))
                raise
            status = CycleStatus.WRITTEN if outcome.was_written else CycleStatus.SKIPPED
            self._finish(CycleResult(status, address=outcome.record.content, forced=force))
            return outcome

    def _cycle(self, force: bool) -> UpdateOutcome:
        config = self._config
        address = self.resolver.resolve(config.ip_type)
        previous = self.state_store.get(config.state_key).last_known_address

        desired = DnsRecord(
            id=config.record_id,
            name=config.record_name,
            type=config.ip_type.record_type,
            content=address,
            ttl=DEFAULT_TTL,
            proxied=False,
        )

        if not force and previous == address:
            logger.debug(f"{config.record_name}: address unchanged ({address}), skipping")
            return UpdateOutcome(record=desired, was_written=False)

        if self.is_stopped:
            if force:
                raise ServiceStoppedError(
                    f"{config.record_name}: service was stopped, forced update not applied"
                )
            logger.info(f"{config.record_name}: service stopped, not writing {address}")
            return UpdateOutcome(record=desired, was_written=False)

        if force:
            reason = "forced update"
        elif previous is None:
            reason = "no previous address"
        else:
            reason = f"changed from {previous}"
        logger.info(f"{config.record_name}: updating {desired.type} to {address} ({reason})")

        outcome = self.provider.update_record(desired)
        self.state_store.record_success(config.state_key, address)
        return UpdateOutcome(record=outcome.record, was_written=True)

    def _finish(self, result: CycleResult) -> None:
        self._last_cycle = result
        if self.on_cycle is None:
            return
        try:
            self.on_cycle(self, result)
        except Exception as e:
            logger.warning(f"{self.name}: cycle callback failed: {e}")

    def force_update(self) -> Tuple[str, str]:
        """Run one forced cycle in the caller's thread.

        Returns only after the address was written; otherwise raises.
        """
        outcome = self.run_cycle(force=True)
        return self._config.record_name, outcome.record.content

    def request_force_update(self) -> None:
        """Ask the running loop to start a forced cycle now."""
        self._force_requested.set()
        self._wake_event.set()

    # =========================================================================
    # Loop
    # =========================================================================

    def run_forever(self) -> None:
        config = self._config
        logger.info(
            f"Starting DDNS updater for {config.record_name} ({config.ip_type.value}), "
            f"interval {config.update_interval}s"
        )

        while not self.is_stopped:
            force = self._force_requested.is_set()
            self._force_requested.clear()

            delay: float = config.update_interval
            try:
                self.run_cycle(force=force)
            except ResolveError as e:
                logger.warning(
                    f"{config.record_name}: {e}; retrying in {self.recovery_interval}s"
                )
                delay = self.recovery_interval
                if force:
                    self._force_requested.set()
            except DDNSError as e:
                logger.error(f"{config.record_name}: update failed: {e}")
            except Exception as e:
                logger.error(f"{config.record_name}: unexpected error: {e}", exc_info=True)

            self._sleep(delay)

        logger.info(f"Stopped DDNS updater for {config.record_name} ({config.ip_type.value})")

    def _sleep(self, seconds: float) -> None:
        self._wake_event.wait(seconds)
        self._wake_event.clear()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()
