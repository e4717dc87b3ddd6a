"""Unit tests for command-line helpers."""

from typing import List

import pytest

from cloudflare_ddns import cli
from cloudflare_ddns.errors import ResolveError
from cloudflare_ddns.models import AddressFamily, DnsRecord, MonitoredRecordConfig, UpdateOutcome
from cloudflare_ddns.state import StateStore
from cloudflare_ddns.transport import RetryingTransport


class TestValidateSettings:
    def test_defaults_are_valid(self) -> None:
        assert cli.validate_settings() is True

    def test_invalid_run_mode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "RUN_MODE", "forever")
        assert cli.validate_settings() is False

    @pytest.mark.parametrize(
        "name,value",
        [
            ("HTTP_MAX_RETRIES", "-1"),
            ("HTTP_MAX_RETRIES", "two"),
            ("HTTP_MAX_RETRIES", "1.5"),
            ("HTTP_TIMEOUT_SECONDS", "0"),
            ("RESOLVE_RETRY_SECONDS", "abc"),
        ],
    )
    def test_invalid_numbers(self, monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
        monkeypatch.setattr(cli, name, value)
        assert cli.validate_settings() is False

    def test_ipv6_urls_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "IPV6_LOOKUP_URLS", " , ")
        assert cli.validate_settings() is False


class TestWiring:
    def test_transport_uses_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "HTTP_MAX_RETRIES", "5")
        monkeypatch.setattr(cli, "HTTP_RETRY_DELAY_MS", "250")
        monkeypatch.setattr(cli, "HTTP_TIMEOUT_SECONDS", "3")

        transport = cli.create_transport()

        assert isinstance(transport, RetryingTransport)
        assert transport.max_retries == 5
        assert transport.retry_delay == 0.25
        assert transport.inner.timeout == 3.0

    def test_resolver_uses_mirror_list(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "IPV6_LOOKUP_URLS", "http://a.test, http://b.test")

        resolver = cli.create_resolver(cli.create_transport())

        assert resolver.ipv6_urls == ["http://a.test", "http://b.test"]


class StubResolver:
    def __init__(self, address=None):
        self.address = address

    def resolve(self, family: AddressFamily) -> str:
        if self.address is None:
            raise ResolveError("no address")
        return self.address


class StubProvider:
    def __init__(self, writes: List[DnsRecord]):
        self.writes = writes

    def update_record(self, record: DnsRecord) -> UpdateOutcome:
        self.writes.append(record)
        return UpdateOutcome(record=record, was_written=True)


class TestRunOnce:
    CONFIG = MonitoredRecordConfig("token", "zone", "rec", "home.example.com")

    def test_writes_each_record(self, monkeypatch: pytest.MonkeyPatch) -> None:
        writes: List[DnsRecord] = []
        monkeypatch.setattr(cli, "create_dns_provider", lambda transport, config: StubProvider(writes))

        ok = cli.run_once([self.CONFIG], None, StubResolver("203.0.113.9"), StateStore())

        assert ok is True
        assert [w.content for w in writes] == ["203.0.113.9"]

    def test_reports_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        writes: List[DnsRecord] = []
        monkeypatch.setattr(cli, "create_dns_provider", lambda transport, config: StubProvider(writes))

        ok = cli.run_once([self.CONFIG], None, StubResolver(), StateStore())

        assert ok is False
        assert writes == []
