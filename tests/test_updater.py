"""Unit tests for UpdateService cycles and its loop.

Covers the resolve/decide/write algorithm: first runs always write,
unchanged addresses are skipped, forced updates always write, and failures
never leave the state store pointing at an address that was not applied.
"""

import threading
import time
from typing import List, Optional, Union

import pytest

from cloudflare_ddns.errors import (
    ErrorKind,
    ProviderLogicError,
    ResolveError,
    ServiceStoppedError,
    TransportError,
)
from cloudflare_ddns.models import (
    AddressFamily,
    CycleResult,
    CycleStatus,
    DnsRecord,
    MonitoredRecordConfig,
    UpdateOutcome,
)
from cloudflare_ddns.provider import DNSProvider
from cloudflare_ddns.state import StateStore
from cloudflare_ddns.updater import UpdateService

# =============================================================================
# Mocks
# =============================================================================


class MockResolver:
    """Returns queued addresses (or raises queued errors); repeats the last one."""

    def __init__(self, *answers: Union[str, Exception]):
        self.answers = list(answers)
        self.calls: List[AddressFamily] = []

    def resolve(self, family: AddressFamily) -> str:
        self.calls.append(family)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class MockDNSProvider(DNSProvider):
    """Mock DNS provider with in-memory records and call tracking."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.update_calls: List[DnsRecord] = []
        self.records = {}

    @property
    def name(self) -> str:
        return "MockDNS"

    def update_record(self, record: DnsRecord) -> UpdateOutcome:
        self.update_calls.append(record)
        if self.fail_with is not None:
            raise self.fail_with
        self.records[record.id] = record
        return UpdateOutcome(record=record, was_written=True)

    def get_record(self, zone_id: str, record_id: str) -> DnsRecord:
        return self.records[record_id]

    def list_records(self, zone_id: str) -> List[DnsRecord]:
        return list(self.records.values())

    def create_record(self, zone_id: str, record: DnsRecord) -> DnsRecord:
        self.records[record.id] = record
        return record


def home_config(ip_type: AddressFamily = AddressFamily.IPV4) -> MonitoredRecordConfig:
    return MonitoredRecordConfig(
        api_token="token",
        zone_id="zone",
        record_id="rec",
        record_name="home.example.com",
        update_interval=300,
        ip_type=ip_type,
    )


def make_service(resolver, provider=None, state=None, **kw) -> UpdateService:
    return UpdateService(
        kw.pop("config", home_config()),
        resolver=resolver,
        provider=provider or MockDNSProvider(),
        state_store=state or StateStore(),
        **kw,
    )


# =============================================================================
# Cycles
# =============================================================================


class TestUpdateCycle:
    """Tests for run_cycle decisions."""

    def test_address_change_scenario(self) -> None:
        provider = MockDNSProvider()
        state = StateStore()
        resolver = MockResolver("203.0.113.9", "203.0.113.9", "203.0.113.10")
        service = make_service(resolver, provider, state)

        first = service.run_cycle()
        assert first.was_written is True
        assert [r.content for r in provider.update_calls] == ["203.0.113.9"]
        assert state.get("zone-rec").last_known_address == "203.0.113.9"

        second = service.run_cycle()
        assert second.was_written is False
        assert len(provider.update_calls) == 1

        third = service.run_cycle()
        assert third.was_written is True
        assert [r.content for r in provider.update_calls] == ["203.0.113.9", "203.0.113.10"]
        assert state.get("zone-rec").last_known_address == "203.0.113.10"

    def test_written_record_uses_config_and_defaults(self) -> None:
        provider = MockDNSProvider()
        service = make_service(MockResolver("2001:db8::1"), provider, config=home_config(AddressFamily.IPV6))

        service.run_cycle()

        assert provider.update_calls == [
            DnsRecord(
                id="rec",
                name="home.example.com",
                type="AAAA",
                content="2001:db8::1",
                ttl=120,
                proxied=False,
            )
        ]

    def test_existing_state_matching_address_skips_first_cycle(self) -> None:
        provider = MockDNSProvider()
        state = StateStore()
        state.record_success("zone-rec", "203.0.113.9")

        outcome = make_service(MockResolver("203.0.113.9"), provider, state).run_cycle()

        assert outcome.was_written is False
        assert provider.update_calls == []

    def test_forced_cycle_writes_unchanged_address(self) -> None:
        provider = MockDNSProvider()
        service = make_service(MockResolver("203.0.113.9"), provider)
        service.run_cycle()

        name, address = service.force_update()

        assert (name, address) == ("home.example.com", "203.0.113.9")
        assert len(provider.update_calls) == 2
        assert service.last_cycle().forced is True

    def test_resolver_failure_writes_nothing(self) -> None:
        provider = MockDNSProvider()
        state = StateStore()
        service = make_service(MockResolver(ResolveError("no address")), provider, state)

        with pytest.raises(ResolveError):
            service.run_cycle()

        assert provider.update_calls == []
        assert state.get("zone-rec").last_known_address is None
        assert service.last_cycle().status is CycleStatus.ERROR

    def test_provider_failure_leaves_state_untouched(self) -> None:
        state = StateStore()
        state.record_success("zone-rec", "203.0.113.9")
        before = state.get("zone-rec")
        provider = MockDNSProvider(fail_with=ProviderLogicError("rejected"))
        service = make_service(MockResolver("203.0.113.10"), provider, state)

        with pytest.raises(ProviderLogicError):
            service.run_cycle()

        assert state.get("zone-rec") == before

    def test_failed_write_is_retried_next_cycle(self) -> None:
        provider = MockDNSProvider(fail_with=TransportError("HTTP 503", ErrorKind.NETWORK_TRANSIENT))
        service = make_service(MockResolver("203.0.113.9"), provider)
        with pytest.raises(TransportError):
            service.run_cycle()

        provider.fail_with = None
        outcome = service.run_cycle()

        assert outcome.was_written is True
        assert len(provider.update_calls) == 2

    def test_force_update_surfaces_failure(self) -> None:
        provider = MockDNSProvider(fail_with=ProviderLogicError("rejected"))
        service = make_service(MockResolver("203.0.113.9"), provider)

        with pytest.raises(ProviderLogicError):
            service.force_update()

    def test_forced_update_on_stopped_service_raises(self) -> None:
        provider = MockDNSProvider()
        state = StateStore()
        service = make_service(MockResolver("203.0.113.9"), provider, state)
        service.stop()

        with pytest.raises(ServiceStoppedError) as exc:
            service.force_update()

        assert exc.value.kind is ErrorKind.CANCELLED
        assert provider.update_calls == []
        assert state.get("zone-rec").last_known_address is None
        assert service.last_cycle().status is CycleStatus.ERROR

    def test_stopped_service_does_not_write(self) -> None:
        provider = MockDNSProvider()
        state = StateStore()
        service = make_service(MockResolver("203.0.113.9"), provider, state)
        service.stop()

        outcome = service.run_cycle()

        assert outcome.was_written is False
        assert provider.update_calls == []
        assert state.get("zone-rec").last_known_address is None

    def test_on_cycle_receives_results(self) -> None:
        results: List[CycleResult] = []
        service = make_service(
            MockResolver("203.0.113.9"), on_cycle=lambda svc, result: results.append(result)
        )

        service.run_cycle()
        service.run_cycle()

        assert [r.status for r in results] == [CycleStatus.WRITTEN, CycleStatus.SKIPPED]
        assert results[0].address == "203.0.113.9"

    def test_failing_callback_does_not_break_cycle(self) -> None:
        def broken(service, result):
            raise RuntimeError("boom")

        outcome = make_service(MockResolver("203.0.113.9"), on_cycle=broken).run_cycle()

        assert outcome.was_written is True

    def test_current_remote_address_reads_provider(self) -> None:
        provider = MockDNSProvider()
        provider.records["rec"] = DnsRecord(id="rec", name="home.example.com", type="A", content="198.51.100.7")
        service = make_service(MockResolver("203.0.113.9"), provider)

        assert service.current_remote_address() == "198.51.100.7"
        assert provider.update_calls == []


# =============================================================================
# Loop
# =============================================================================


class TestUpdateLoop:
    """Tests for run_forever scheduling."""

    def test_request_force_update_wakes_sleeping_loop(self) -> None:
        provider = MockDNSProvider()
        second_write = threading.Event()

        def on_cycle(service, result):
            if len(provider.update_calls) >= 2:
                second_write.set()

        service = make_service(MockResolver("203.0.113.9"), provider, on_cycle=on_cycle)
        thread = threading.Thread(target=service.run_forever, daemon=True)
        thread.start()
        try:
            for _ in range(200):
                if service.last_cycle() is not None:
                    break
                time.sleep(0.01)
            service.request_force_update()

            assert second_write.wait(timeout=5)
        finally:
            service.stop()
            thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(provider.update_calls) == 2

    def test_resolver_failure_waits_recovery_interval_and_retries(self) -> None:
        provider = MockDNSProvider()
        written = threading.Event()
        resolver = MockResolver(ResolveError("down"), ResolveError("down"), "203.0.113.9")
        service = make_service(
            resolver,
            provider,
            recovery_interval=0.01,
            on_cycle=lambda svc, result: written.set() if result.status is CycleStatus.WRITTEN else None,
        )
        thread = threading.Thread(target=service.run_forever, daemon=True)
        thread.start()
        try:
            assert written.wait(timeout=5)
        finally:
            service.stop()
            thread.join(timeout=5)

        assert len(resolver.calls) == 3
        assert [r.content for r in provider.update_calls] == ["203.0.113.9"]

    def test_provider_failure_does_not_end_loop(self) -> None:
        provider = MockDNSProvider(fail_with=ProviderLogicError("rejected"))
        failed = threading.Event()
        service = make_service(
            MockResolver("203.0.113.9"),
            provider,
            on_cycle=lambda svc, result: failed.set(),
        )
        thread = threading.Thread(target=service.run_forever, daemon=True)
        thread.start()
        try:
            assert failed.wait(timeout=5)
            assert thread.is_alive()
        finally:
            service.stop()
            thread.join(timeout=5)

        assert service.last_cycle().status is CycleStatus.ERROR
        assert not thread.is_alive()
