#!/usr/bin/env python3
"""cloudflare-ddns - Dynamic DNS for Cloudflare

Keeps Cloudflare A/AAAA records pointed at this host's public IPv4/IPv6
address. Each configured record gets its own polling loop; records only
change when the public address changes (or an update is forced).

Environment variables:

    Record Configuration:
        DDNS_CONFIG_FILE       JSON or YAML file with the monitored records
                               (default: config/ddns.json)
                               Example YAML file:
                                 - api_token: "..."
                                   zone_id: "..."
                                   record_id: "..."
                                   record_name: "home.example.com"
                                   update_interval: 300
                                   ip_type: "ipv4"

        When the file is missing or empty the records are taken from
        CLOUDFLARE_API_TOKEN, CLOUDFLARE_ZONE_ID, CLOUDFLARE_RECORD_ID,
        CLOUDFLARE_RECORD_NAME, DDNS_UPDATE_INTERVAL and their *_V6
        counterparts, then written to DDNS_CONFIG_FILE.

    Runtime:
        RUN_MODE                       "once" or "watch" (default: watch)
        LOG_LEVEL                      DEBUG, INFO, WARNING, ERROR (default: INFO)
        STATE_PATH                     JSON state file path (default: in memory only)
        CONFIG_WATCH_INTERVAL_SECONDS  Config file poll interval (default: 5)
        RESOLVE_RETRY_SECONDS          Wait after a failed address lookup (default: 60)

    HTTP:
        HTTP_TIMEOUT_SECONDS   Per-attempt timeout (default: 10)
        HTTP_MAX_RETRIES       Retries for transient failures (default: 3)
        HTTP_RETRY_DELAY_MS    Delay between retries (default: 500)

    Endpoints:
        CLOUDFLARE_API_URL     Cloudflare API base URL
                               (default: https://api.cloudflare.com/client/v4)
        IPV4_LOOKUP_URL        IPv4 lookup service (default: https://api4.ipify.org)
        IPV6_LOOKUP_URLS       Comma-separated IPv6 lookup services, tried in order
                               (default: api6.ipify.org, v6.ident.me, ipv6.icanhazip.com)
"""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import List

from .config import DEFAULT_CONFIG_PATH, ConfigStore
from .errors import DDNSError
from .events import EventBus
from .models import MonitoredRecordConfig
from .orchestrator import Orchestrator
from .provider import CLOUDFLARE_API_URL as DEFAULT_CLOUDFLARE_API_URL
from .provider import CloudflareDNSProvider, DNSProvider
from .resolver import DEFAULT_IPV4_URL, DEFAULT_IPV6_URLS, PublicIPResolver
from .state import StateStore
from .transport import HttpTransport, RetryingTransport, Transport
from .updater import UpdateService

# =============================================================================
# Configuration
# =============================================================================

DDNS_CONFIG_FILE = os.getenv("DDNS_CONFIG_FILE", DEFAULT_CONFIG_PATH)
STATE_PATH = os.getenv("STATE_PATH", "")
RUN_MODE = os.getenv("RUN_MODE", "watch").lower().strip()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CONFIG_WATCH_INTERVAL_SECONDS = os.getenv("CONFIG_WATCH_INTERVAL_SECONDS", "5")
RESOLVE_RETRY_SECONDS = os.getenv("RESOLVE_RETRY_SECONDS", "60")

HTTP_TIMEOUT_SECONDS = os.getenv("HTTP_TIMEOUT_SECONDS", "10")
HTTP_MAX_RETRIES = os.getenv("HTTP_MAX_RETRIES", "3")
HTTP_RETRY_DELAY_MS = os.getenv("HTTP_RETRY_DELAY_MS", "500")

CLOUDFLARE_API_URL = os.getenv("CLOUDFLARE_API_URL", DEFAULT_CLOUDFLARE_API_URL)
IPV4_LOOKUP_URL = os.getenv("IPV4_LOOKUP_URL", DEFAULT_IPV4_URL)
IPV6_LOOKUP_URLS = os.getenv("IPV6_LOOKUP_URLS", ",".join(DEFAULT_IPV6_URLS))

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_urls(value: str) -> List[str]:
    return [url.strip() for url in value.split(",") if url.strip()]


def validate_settings() -> bool:
    """Validate runtime settings."""
    errors = []

    if RUN_MODE not in ("once", "watch"):
        errors.append(f"Invalid RUN_MODE: {RUN_MODE}. Use 'once' or 'watch'")

    for name, value, minimum in (
        ("CONFIG_WATCH_INTERVAL_SECONDS", CONFIG_WATCH_INTERVAL_SECONDS, 1),
        ("RESOLVE_RETRY_SECONDS", RESOLVE_RETRY_SECONDS, 1),
        ("HTTP_TIMEOUT_SECONDS", HTTP_TIMEOUT_SECONDS, 1),
        ("HTTP_MAX_RETRIES", HTTP_MAX_RETRIES, 0),
        ("HTTP_RETRY_DELAY_MS", HTTP_RETRY_DELAY_MS, 0),
    ):
        try:
            number = float(value)
        except ValueError:
            errors.append(f"{name} must be a number, got {value!r}")
            continue
        if number < minimum:
            errors.append(f"{name} must be at least {minimum}, got {value}")

    if not HTTP_MAX_RETRIES.strip().isdigit():
        errors.append(f"HTTP_MAX_RETRIES must be a whole number, got {HTTP_MAX_RETRIES!r}")

    if not CLOUDFLARE_API_URL.startswith(("http://", "https://")):
        errors.append(f"CLOUDFLARE_API_URL must be an http(s) URL, got {CLOUDFLARE_API_URL!r}")
    if not IPV4_LOOKUP_URL:
        errors.append("IPV4_LOOKUP_URL cannot be empty")
    if not _parse_urls(IPV6_LOOKUP_URLS):
        errors.append("IPV6_LOOKUP_URLS needs at least one URL")

    if errors:
        for error in errors:
            logger.error(error)
        return False

    return True


# =============================================================================
# Wiring
# =============================================================================


def create_transport() -> Transport:
    return RetryingTransport(
        HttpTransport(timeout=float(HTTP_TIMEOUT_SECONDS)),
        max_retries=int(HTTP_MAX_RETRIES),
        retry_delay=float(HTTP_RETRY_DELAY_MS) / 1000.0,
    )


def create_resolver(transport: Transport) -> PublicIPResolver:
    return PublicIPResolver(
        transport,
        ipv4_url=IPV4_LOOKUP_URL,
        ipv6_urls=_parse_urls(IPV6_LOOKUP_URLS),
    )


def create_dns_provider(transport: Transport, config: MonitoredRecordConfig) -> DNSProvider:
    return CloudflareDNSProvider(
        transport, config.api_token, config.zone_id, base_url=CLOUDFLARE_API_URL
    )


def run_once(
    configs: List[MonitoredRecordConfig],
    transport: Transport,
    resolver: PublicIPResolver,
    state_store: StateStore,
) -> bool:
    """Run a single cycle for every record; False if any of them failed."""
    ok = True
    for config in configs:
        try:
            service = UpdateService(
                config,
                resolver=resolver,
                provider=create_dns_provider(transport, config),
                state_store=state_store,
            )
            outcome = service.run_cycle()
        except DDNSError as e:
            logger.error(f"{config.record_name}: update failed: {e}")
            ok = False
            continue
        action = "updated" if outcome.was_written else "unchanged"
        logger.info(f"{config.record_name}: {action} ({outcome.record.content})")
    return ok


def main():
    """Main entry point."""
    configure_logging()
    logger.info("cloudflare-ddns starting")

    if not validate_settings():
        logger.error("Configuration validation failed")
        sys.exit(1)

    transport = create_transport()
    resolver = create_resolver(transport)
    state_store = StateStore(STATE_PATH or None)
    bus = EventBus()
    config_store = ConfigStore(
        DDNS_CONFIG_FILE, bus=bus, poll_interval=float(CONFIG_WATCH_INTERVAL_SECONDS)
    )

    logger.info(f"Config file: {DDNS_CONFIG_FILE}")
    logger.info(f"Run mode: {RUN_MODE}")
    if STATE_PATH:
        logger.info(f"State file: {STATE_PATH}")

    orchestrator = None
    try:
        if RUN_MODE == "once":
            configs = config_store.load()
            if not configs:
                logger.error("No DDNS records configured. Exiting.")
                sys.exit(1)
            if not run_once(configs, transport, resolver, state_store):
                sys.exit(1)
            return

        orchestrator = Orchestrator(
            config_store,
            bus,
            state_store,
            resolver,
            provider_factory=lambda config: create_dns_provider(transport, config),
            recovery_interval=float(RESOLVE_RETRY_SECONDS),
        )
        orchestrator.start()

        while True:
            time.sleep(60)

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if orchestrator is not None:
            orchestrator.stop()
        bus.close()


if __name__ == "__main__":
    main()
