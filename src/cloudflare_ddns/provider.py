"""DNS provider interface and the Cloudflare implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from .errors import (
    DDNSError,
    ErrorKind,
    NotFoundError,
    ProviderLogicError,
    TransportError,
    ValidationError,
)
from .models import DnsRecord, UpdateOutcome
from .transport import Transport

logger = logging.getLogger(__name__)

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"


# =============================================================================
# DNS Provider Interface
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def update_record(self, record: DnsRecord) -> UpdateOutcome:
        """Replace the record identified by ``record.id``."""
        pass

    @abstractmethod
    def get_record(self, zone_id: str, record_id: str) -> DnsRecord:
        pass

    @abstractmethod
    def list_records(self, zone_id: str) -> List[DnsRecord]:
        pass

    @abstractmethod
    def create_record(self, zone_id: str, record: DnsRecord) -> DnsRecord:
        pass

    def test_connection(self) -> bool:
        """Check that the provider is reachable with the configured credentials."""
        return True


# =============================================================================
# Cloudflare
# =============================================================================


class CloudflareDNSProvider(DNSProvider):
    """Cloudflare v4 API, scoped to one zone and one API token."""

    def __init__(
        self,
        transport: Transport,
        api_token: str,
        zone_id: str,
        base_url: str = CLOUDFLARE_API_URL,
    ):
        if not api_token.strip():
            raise ValidationError("API token cannot be empty")
        self.transport = transport
        self.zone_id = zone_id
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }

    @property
    def name(self) -> str:
        return "Cloudflare"

    def test_connection(self) -> bool:
        try:
            self._call("GET", f"{self._base_url}/user/tokens/verify")
            logger.info(f"{self.name} connection successful")
            return True
        except DDNSError as e:
            logger.error(f"Failed to connect to {self.name}: {e}")
            return False

    def update_record(self, record: DnsRecord) -> UpdateOutcome:
        if not record.id:
            raise ValidationError(f"Cannot update {record.name}: record id is missing")
        result = self._call(
            "PUT", self._record_url(self.zone_id, record.id), body=record.to_payload()
        )
        if not isinstance(result, dict):
            raise ProviderLogicError(f"No record in response when updating {record.name}")
        updated = DnsRecord.from_dict(result)
        logger.info(f"Updated DNS record: {updated.name} ({updated.type}) -> {updated.content}")
        return UpdateOutcome(record=updated, was_written=True)

    def get_record(self, zone_id: str, record_id: str) -> DnsRecord:
        result = self._call("GET", self._record_url(zone_id, record_id))
        if not isinstance(result, dict):
            raise NotFoundError(f"DNS record not found: {record_id}")
        return DnsRecord.from_dict(result)

    def list_records(self, zone_id: str) -> List[DnsRecord]:
        result = self._call("GET", f"{self._base_url}/zones/{zone_id}/dns_records")
        if not result:
            return []
        records = []
        for item in result:
            if not isinstance(item, dict):
                logger.warning(f"Skipping malformed record: {item}")
                continue
            records.append(DnsRecord.from_dict(item))
        return records

    def create_record(self, zone_id: str, record: DnsRecord) -> DnsRecord:
        result = self._call(
            "POST", f"{self._base_url}/zones/{zone_id}/dns_records", body=record.to_payload()
        )
        if not isinstance(result, dict):
            raise ProviderLogicError(f"Failed to create DNS record {record.name}")
        created = DnsRecord.from_dict(result)
        logger.info(f"Created DNS record: {created.name} ({created.type}) -> {created.content}")
        return created

    def _record_url(self, zone_id: str, record_id: str) -> str:
        return f"{self._base_url}/zones/{zone_id}/dns_records/{record_id}"

    def _call(self, method: str, url: str, body: Any = None) -> Any:
        """Send a request and unwrap the ``{success, errors, result}`` envelope."""
        try:
            envelope = self.transport.request_json(method, url, body=body, headers=self._headers)
        except TransportError as e:
            if e.kind is ErrorKind.NOT_FOUND:
                raise NotFoundError(f"{self.name} resource not found: {method} {url}") from e
            raise
        if not isinstance(envelope, dict):
            raise ProviderLogicError(f"Unexpected {self.name} response to {method} {url}")
        if not envelope.get("success", False):
            errors = envelope.get("errors") or []
            raise ProviderLogicError(self._describe_errors(errors), errors=errors)
        return envelope.get("result")

    def _describe_errors(self, errors: List[Dict[str, Any]]) -> str:
        if not errors:
            return f"Unknown {self.name} API error"
        parts = []
        for error in errors:
            if isinstance(error, dict):
                parts.append(f"[{error.get('code', '?')}] {error.get('message', '')}".strip())
            else:
                parts.append(str(error))
        return f"{self.name} API error: {'; '.join(parts)}"
