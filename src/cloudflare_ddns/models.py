"""Data model shared by every component."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import ValidationError

MIN_UPDATE_INTERVAL = 5
DEFAULT_UPDATE_INTERVAL = 300
DEFAULT_TTL = 120


# =============================================================================
# Enums
# =============================================================================


class AddressFamily(Enum):
    """IP address family of a monitored record."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def record_type(self) -> str:
        return "A" if self is AddressFamily.IPV4 else "AAAA"

    @classmethod
    def parse(cls, value: Any) -> "AddressFamily":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid IP type: {value!r} (expected ipv4 or ipv6)")


class EventKind(Enum):
    """Control signals carried by the event bus."""

    RESTART_ALL = "restart_all"
    FORCE_UPDATE = "force_update"
    CONFIG_CHANGED = "config_changed"


class CycleStatus(Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    ERROR = "error"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class MonitoredRecordConfig:
    """One DNS record kept in sync with the host's public address."""

    api_token: str
    zone_id: str
    record_id: str
    record_name: str
    update_interval: int = DEFAULT_UPDATE_INTERVAL
    ip_type: AddressFamily = AddressFamily.IPV4

    @property
    def key(self) -> Tuple[str, AddressFamily]:
        """Identity of the record across config generations."""
        return (self.record_name, self.ip_type)

    @property
    def state_key(self) -> str:
        return f"{self.zone_id}-{self.record_id}"

    def validate(self) -> None:
        """Raise ValidationError if any field is unusable."""
        for field_name, label in (
            ("api_token", "API token"),
            ("zone_id", "Zone ID"),
            ("record_id", "Record ID"),
            ("record_name", "Record name"),
        ):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{label} cannot be empty")
        if isinstance(self.update_interval, bool) or not isinstance(self.update_interval, int):
            raise ValidationError("Update interval must be an integer")
        if self.update_interval < MIN_UPDATE_INTERVAL:
            raise ValidationError(
                f"Update interval cannot be less than {MIN_UPDATE_INTERVAL} seconds"
            )
        if not isinstance(self.ip_type, AddressFamily):
            raise ValidationError(f"Invalid IP type: {self.ip_type!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitoredRecordConfig":
        """Build and validate a config from its JSON/YAML representation."""
        if not isinstance(data, dict):
            raise ValidationError(f"Config entry must be an object, got {type(data).__name__}")

        raw_interval = data.get("update_interval", DEFAULT_UPDATE_INTERVAL)
        try:
            update_interval = int(raw_interval)
        except (TypeError, ValueError):
            raise ValidationError(f"Update interval must be a number, got {raw_interval!r}")

        config = cls(
            api_token=str(data.get("api_token") or "").strip(),
            zone_id=str(data.get("zone_id") or "").strip(),
            record_id=str(data.get("record_id") or "").strip(),
            record_name=str(data.get("record_name") or "").strip(),
            update_interval=update_interval,
            ip_type=AddressFamily.parse(data.get("ip_type", "ipv4")),
        )
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "api_token": self.api_token,
            "zone_id": self.zone_id,
            "record_id": self.record_id,
            "record_name": self.record_name,
            "update_interval": self.update_interval,
            "ip_type": self.ip_type.value,
        }


@dataclass(frozen=True)
class DnsRecord:
    """Provider-neutral DNS record."""

    name: str
    type: str
    content: str
    ttl: int = DEFAULT_TTL
    proxied: bool = False
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DnsRecord":
        return cls(
            id=data.get("id"),
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            content=str(data.get("content", "")),
            ttl=int(data.get("ttl", DEFAULT_TTL)),
            proxied=bool(data.get("proxied", False)),
        )

    def to_payload(self) -> Dict[str, Any]:
        """Body for create/update requests (the id travels in the URL)."""
        return {
            "type": self.type,
            "name": self.name,
            "content": self.content,
            "ttl": self.ttl,
            "proxied": self.proxied,
        }


@dataclass(frozen=True)
class RecordState:
    last_known_address: Optional[str] = None
    last_update_time: Optional[datetime] = None


@dataclass(frozen=True)
class UpdateOutcome:
    record: DnsRecord
    was_written: bool


@dataclass(frozen=True)
class ControlEvent:
    kind: EventKind
    payload: Optional[str] = None


@dataclass(frozen=True)
class CycleResult:
    """What one poll cycle did, for status reporting and external logging."""

    status: CycleStatus
    address: Optional[str] = None
    error: Optional[str] = None
    forced: bool = False
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class RecordStatus:
    record_name: str
    ip_type: AddressFamily
    current_address: Optional[str]
    last_update_time: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_name": self.record_name,
            "ip_type": self.ip_type.value,
            "current_address": self.current_address,
            "last_update_time": (
                self.last_update_time.isoformat() if self.last_update_time else None
            ),
        }
