#!/usr/bin/env python3
"""name-dyndns - Dynamic DNS for Name.com

Periodically discovers this host's public IPv4/IPv6 addresses and keeps the
matching A/AAAA records of one or more Name.com domains pointed at them.
One reconciliation loop runs per configured domain.

Environment variables:

    Configuration Source (first one found wins):
        DYNDNS_CONFIG_PATH     Path to a YAML/JSON config file, or a directory
                               of *.yaml / *.yml / *.json files
                               (default: /config/name-dyndns.yaml)
                               Example config file:
                                 configs:
                                   - domain: "example.com"
                                     hostnames: ["", "www"]
                                     interval: 300
                                     username: "alice"
                                     token: "0123456789abcdef"
                                     dev: false

        DYNDNS_CONFIGS         JSON list of configs (same keys as above).

        Single-config mode (used if neither of the above is set):
            NAMECOM_USERNAME     Name.com API username
            NAMECOM_TOKEN        Name.com API token
            NAMECOM_DOMAIN       Domain to manage
            NAMECOM_HOSTNAMES    Comma-separated hostnames; an empty entry
                                 (e.g. ",www") denotes the bare domain
            NAMECOM_DEV          Use the Name.com development API (default: false)

    IP Discovery:
        IPV4_MIRRORS           Comma-separated URLs returning the caller's IPv4
                               (default: https://api.ipify.org)
        IPV6_MIRRORS           Comma-separated URLs returning the caller's IPv6
                               (default: https://api6.ipify.org)

    Runtime:
        SYNC_MODE              "once" or "daemon" (default: daemon)
        POLL_INTERVAL_SECONDS  Default update interval per config (default: 300)
        HTTP_TIMEOUT_SECONDS   Timeout for every outbound request (default: 10)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import signal
import sys
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
import yaml
from requests.auth import HTTPBasicAuth

# =============================================================================
# Configuration
# =============================================================================

DYNDNS_CONFIG_PATH = os.getenv("DYNDNS_CONFIG_PATH", "/config/name-dyndns.yaml")
DYNDNS_CONFIGS = os.getenv("DYNDNS_CONFIGS", "").strip()

DEFAULT_IPV4_MIRRORS = ["https://api.ipify.org"]
DEFAULT_IPV6_MIRRORS = ["https://api6.ipify.org"]
IPV4_MIRRORS = os.getenv("IPV4_MIRRORS", ",".join(DEFAULT_IPV4_MIRRORS))
IPV6_MIRRORS = os.getenv("IPV6_MIRRORS", ",".join(DEFAULT_IPV6_MIRRORS))

SYNC_MODE = os.getenv("SYNC_MODE", "daemon").lower().strip()
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "300"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CONFIG_FILE_SUFFIXES = (".yaml", ".yml", ".json")

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Enums
# =============================================================================


class Environment(Enum):
    """Name.com API environment a config talks to."""

    PRODUCTION = "production"
    DEVELOPMENT = "development"


class AddressFamily(Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"


class ProviderErrorReason(Enum):
    """Why a provider call failed.

    AUTHENTICATION: The API rejected the credentials (HTTP 401/403).
    TRANSPORT: The request did not complete or returned another error status.
    MALFORMED_RESPONSE: The response body could not be decoded or had an
                        unexpected shape.
    """

    AUTHENTICATION = "authentication"
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"


# =============================================================================
# Exceptions
# =============================================================================


class DynDNSError(Exception):
    """Base class for all name-dyndns errors."""


class ResolutionError(DynDNSError):
    """No mirror produced a usable address for an address family."""

    def __init__(self, family: AddressFamily, message: str = ""):
        self.family = family
        super().__init__(message or f"Could not retrieve external {family.value} address")


class ProviderError(DynDNSError):
    """A DNS provider call failed."""

    def __init__(
        self,
        reason: ProviderErrorReason,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(DynDNSError):
    """The configuration is missing or malformed."""


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class DomainConfig:
    """Configuration for one managed domain.

    An empty hostname denotes the bare domain itself.
    """

    domain: str
    hostnames: tuple[str, ...]
    username: str
    token: str
    interval_seconds: int = 300
    environment: Environment = Environment.PRODUCTION

    def matches(self, fqdn: str) -> bool:
        """Check if a provider FQDN belongs to one of the configured hostnames.

        Provider FQDNs are trailing-dot terminated and compared exactly.
        """
        for hostname in self.hostnames:
            if hostname == "":
                if fqdn == f"{self.domain}.":
                    return True
            elif fqdn == f"{hostname}.{self.domain}.":
                return True
        return False


@dataclass(frozen=True)
class DNSRecord:
    """Represents a Name.com DNS record."""

    id: int
    domain_name: str
    host: str
    fqdn: str
    type: str
    answer: str
    ttl: int = 300

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DNSRecord":
        """Build a record from a Name.com API record object.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected object, got {type(data).__name__}")
        try:
            record_id = int(data["id"])
            ttl = int(data.get("ttl", 300))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"invalid id/ttl: {e}") from e
        values = {}
        for key in ("domainName", "fqdn", "type", "answer"):
            value = data.get(key)
            if not isinstance(value, str):
                raise ValueError(f"missing or invalid '{key}'")
            values[key] = value
        host = data.get("host") or ""
        if not isinstance(host, str):
            raise ValueError("invalid 'host'")
        return cls(
            id=record_id,
            domain_name=values["domainName"],
            host=host,
            fqdn=values["fqdn"],
            type=values["type"],
            answer=values["answer"],
            ttl=ttl,
        )

    def to_api(self) -> Dict[str, Any]:
        """Request body for create/update calls."""
        return {"host": self.host, "type": self.type, "answer": self.answer, "ttl": self.ttl}


@dataclass(frozen=True)
class ResolvedAddresses:
    """Public addresses discovered during one pass."""

    ipv4: Optional[str] = None
    ipv6: Optional[str] = None

    def is_empty(self) -> bool:
        return self.ipv4 is None and self.ipv6 is None

    def for_record_type(self, record_type: str) -> Optional[str]:
        """Return the address a record of this type should point at, if known."""
        record_type = record_type.upper()
        if record_type == "A":
            return self.ipv4
        if record_type == "AAAA":
            return self.ipv6
        return None


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass for one domain."""

    domain: str
    completed: bool = False
    error: str = ""
    updated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    unchanged: int = 0


# =============================================================================
# IP Resolver
# =============================================================================


class IPResolver:
    """Discovers this host's public addresses through "what is my IP" mirrors.

    Mirrors are tried in order, one request each; the first valid answer wins.
    """

    def __init__(
        self,
        ipv4_mirrors: Sequence[str] = tuple(DEFAULT_IPV4_MIRRORS),
        ipv6_mirrors: Sequence[str] = tuple(DEFAULT_IPV6_MIRRORS),
        timeout_seconds: float = 10.0,
    ):
        self.ipv4_mirrors = tuple(ipv4_mirrors)
        self.ipv6_mirrors = tuple(ipv6_mirrors)
        self._timeout = timeout_seconds
        self._session = requests.Session()

    def resolve_ipv4(self) -> str:
        return self._resolve(AddressFamily.IPV4, self.ipv4_mirrors)

    def resolve_ipv6(self) -> str:
        return self._resolve(AddressFamily.IPV6, self.ipv6_mirrors)

    def resolve(self) -> ResolvedAddresses:
        """Resolve both families independently.

        A family that cannot be resolved is logged and left as None.
        """
        addresses: Dict[AddressFamily, Optional[str]] = {}
        for family, resolve in (
            (AddressFamily.IPV4, self.resolve_ipv4),
            (AddressFamily.IPV6, self.resolve_ipv6),
        ):
            try:
                addresses[family] = resolve()
            except ResolutionError as e:
                logger.warning(f"Failed to retrieve {family.value}: {e}")
                addresses[family] = None
        return ResolvedAddresses(
            ipv4=addresses[AddressFamily.IPV4], ipv6=addresses[AddressFamily.IPV6]
        )

    def _resolve(self, family: AddressFamily, mirrors: Sequence[str]) -> str:
        for url in mirrors:
            try:
                response = self._session.get(url, timeout=self._timeout)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                logger.warning(f"Mirror {url} failed for {family.value}: {e}")
                continue

            address = response.text.strip()
            if not address:
                logger.warning(f"Mirror {url} returned an empty {family.value} response")
                continue
            if not _is_valid_address(address, family):
                logger.warning(f"Mirror {url} returned an invalid {family.value} address: {address!r}")
                continue

            logger.debug(f"Mirror {url} reported {family.value} {address}")
            return address

        raise ResolutionError(family)


def _is_valid_address(address: str, family: AddressFamily) -> bool:
    """Check that a mirror answer looks like an address of the given family."""
    if family == AddressFamily.IPV6 and ":" not in address:
        return False
    try:
        parsed = ipaddress.ip_address(address)
    except ValueError:
        return False
    expected = ipaddress.IPv6Address if family == AddressFamily.IPV6 else ipaddress.IPv4Address
    return isinstance(parsed, expected)


# =============================================================================
# DNS Provider Interface and Implementations
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers.

    Every operation raises ProviderError on failure; providers never retry.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the DNS provider."""
        pass

    @abstractmethod
    def list_records(self, domain: str) -> List[DNSRecord]:
        """Get all DNS records of a domain, regardless of type."""
        pass

    @abstractmethod
    def create_record(self, record: DNSRecord) -> DNSRecord:
        """Create a DNS record. The record id is assigned by the provider."""
        pass

    @abstractmethod
    def update_record(self, record: DNSRecord) -> None:
        """Update the host/type/answer/ttl of an existing record in place."""
        pass

    @abstractmethod
    def delete_record(self, record: DNSRecord) -> None:
        """Delete a DNS record."""
        pass


class NameComDNSProvider(DNSProvider):
    """Name.com API v4 DNS provider implementation."""

    PRODUCTION_URL = "https://api.name.com/v4"
    DEVELOPMENT_URL = "https://api.dev.name.com/v4"

    def __init__(
        self,
        username: str,
        token: str,
        environment: Environment = Environment.PRODUCTION,
        timeout_seconds: float = 10.0,
    ):
        self._url = (
            self.DEVELOPMENT_URL if environment == Environment.DEVELOPMENT else self.PRODUCTION_URL
        )
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.auth = HTTPBasicAuth(username, token)

    @property
    def name(self) -> str:
        return "Name.com"

    @property
    def base_url(self) -> str:
        return self._url

    def test_connection(self) -> bool:
        try:
            self._request("GET", "/hello")
            logger.info(f"{self.name} connection successful ({self._url})")
            return True
        except ProviderError as e:
            logger.error(f"Failed to connect to {self.name}: {e}")
            return False

    def list_records(self, domain: str) -> List[DNSRecord]:
        records: List[DNSRecord] = []
        page: Optional[int] = 1
        while page:
            params = {"page": page} if page > 1 else None
            data = self._decode(self._request("GET", f"/domains/{domain}/records", params=params))
            if not isinstance(data, dict):
                raise ProviderError(
                    ProviderErrorReason.MALFORMED_RESPONSE,
                    f"Unexpected response listing {domain}: expected object, got {type(data).__name__}",
                )

            raw_records = data.get("records", [])
            if not isinstance(raw_records, list):
                raise ProviderError(
                    ProviderErrorReason.MALFORMED_RESPONSE,
                    f"Unexpected 'records' field listing {domain}: {type(raw_records).__name__}",
                )

            for raw in raw_records:
                try:
                    records.append(DNSRecord.from_api(raw))
                except ValueError as e:
                    logger.warning(f"Skipping malformed record {raw}: {e}")

            next_page = data.get("nextPage")
            page = next_page if isinstance(next_page, int) and next_page > page else None
        return records

    def create_record(self, record: DNSRecord) -> DNSRecord:
        data = self._decode(
            self._request("POST", f"/domains/{record.domain_name}/records", body=record.to_api())
        )
        try:
            created = DNSRecord.from_api(data)
        except ValueError as e:
            raise ProviderError(
                ProviderErrorReason.MALFORMED_RESPONSE, f"Unexpected create response: {e}"
            ) from e
        logger.info(f"Created DNS record: {created.fqdn} {created.type} -> {created.answer}")
        return created

    def update_record(self, record: DNSRecord) -> None:
        self._request(
            "PUT", f"/domains/{record.domain_name}/records/{record.id}", body=record.to_api()
        )
        logger.info(f"Updated DNS record: {record.fqdn} {record.type} -> {record.answer}")

    def delete_record(self, record: DNSRecord) -> None:
        self._request("DELETE", f"/domains/{record.domain_name}/records/{record.id}")
        logger.info(f"Deleted DNS record: {record.fqdn} {record.type} -> {record.answer}")

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        url = f"{self._url}{path}"
        try:
            response = self._session.request(
                method, url, json=body, params=params, timeout=self._timeout
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(
                ProviderErrorReason.TRANSPORT, f"{method} {url} failed: {e}"
            ) from e

        if response.status_code in (401, 403):
            raise ProviderError(
                ProviderErrorReason.AUTHENTICATION,
                f"{method} {url} rejected credentials (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise ProviderError(
                ProviderErrorReason.TRANSPORT,
                f"{method} {url} failed: {e}",
                status_code=response.status_code,
            ) from e
        return response

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                ProviderErrorReason.MALFORMED_RESPONSE, f"Invalid JSON from {response.url}: {e}"
            ) from e


def create_dns_provider(
    config: DomainConfig, timeout_seconds: float = HTTP_TIMEOUT_SECONDS
) -> DNSProvider:
    """Factory function to create the DNS provider for a config."""
    return NameComDNSProvider(
        config.username,
        config.token,
        environment=config.environment,
        timeout_seconds=timeout_seconds,
    )


# =============================================================================
# Utility Functions
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_url_list(value: str, default: Sequence[str]) -> List[str]:
    """Parse a comma-separated URL list, falling back to the default if empty."""
    urls = [item.strip() for item in value.split(",") if item.strip()]
    return urls or list(default)


def _normalize_name(value: str) -> str:
    return value.strip().rstrip(".")


def find_config_files(config_path: str) -> List[str]:
    """Find all config files in directory or return single file.

    Args:
        config_path: Path to config file or directory

    Returns:
        List of config file paths (excluding .template files)
    """
    path = Path(config_path)

    if path.is_file():
        return [str(path)]

    if path.is_dir():
        return [
            str(f)
            for f in sorted(path.iterdir())
            if f.is_file() and f.suffix in CONFIG_FILE_SUFFIXES
        ]

    return []


def parse_domain_config(item: Any, *, default_interval: int = 300) -> DomainConfig:
    """Build a DomainConfig from one raw config mapping.

    Accepts the keys domain, hostnames, interval, username, token and either
    dev (bool) or environment ("production" / "development").

    Raises:
        ConfigurationError: If the entry is malformed.
    """
    if not isinstance(item, dict):
        raise ConfigurationError(f"Config entry must be a mapping, got {type(item).__name__}")

    domain = _normalize_name(str(item.get("domain") or ""))
    if not domain:
        raise ConfigurationError("Config entry is missing 'domain'")

    raw_hostnames = item.get("hostnames", [""])
    if isinstance(raw_hostnames, str):
        raw_hostnames = raw_hostnames.split(",")
    if not isinstance(raw_hostnames, list):
        raise ConfigurationError(f"{domain}: 'hostnames' must be a list")
    hostnames: List[str] = []
    for raw in raw_hostnames:
        hostname = _normalize_name(str(raw if raw is not None else ""))
        if hostname not in hostnames:
            hostnames.append(hostname)
    if not hostnames:
        raise ConfigurationError(f"{domain}: 'hostnames' must not be empty")

    username = str(item.get("username") or "").strip()
    token = str(item.get("token") or "").strip()
    if not username or not token:
        raise ConfigurationError(f"{domain}: 'username' and 'token' are required")

    try:
        raw_interval = item.get("interval")
        interval = int(raw_interval) if raw_interval not in (None, "") else default_interval
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{domain}: invalid 'interval': {e}") from e
    if interval <= 0:
        raise ConfigurationError(f"{domain}: 'interval' must be positive, got {interval}")

    if "environment" in item:
        try:
            environment = Environment(str(item["environment"]).lower().strip())
        except ValueError as e:
            raise ConfigurationError(
                f"{domain}: unknown environment {item['environment']!r}"
            ) from e
    else:
        dev = _parse_bool(item.get("dev"), default=False)
        environment = Environment.DEVELOPMENT if dev else Environment.PRODUCTION

    return DomainConfig(
        domain=domain,
        hostnames=tuple(hostnames),
        username=username,
        token=token,
        interval_seconds=interval,
        environment=environment,
    )


def _parse_config_list(raw: Any, source: str, default_interval: int) -> List[DomainConfig]:
    if isinstance(raw, dict):
        raw = raw.get("configs")
    if not isinstance(raw, list):
        raise ConfigurationError(f"{source}: expected a 'configs' list")
    return [parse_domain_config(item, default_interval=default_interval) for item in raw]


def load_configs(
    config_path: str = "",
    configs_json: str = "",
    env: Optional[Dict[str, str]] = None,
    default_interval: int = 300,
) -> List[DomainConfig]:
    """Load domain configs from files, a JSON string, or single-config env vars.

    Raises:
        ConfigurationError: If the selected source is malformed or nothing is
            configured.
    """
    config_files = find_config_files(config_path) if config_path else []
    if config_files:
        configs: List[DomainConfig] = []
        for config_file in config_files:
            try:
                with open(config_file, "r") as f:
                    config_data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to load config from {config_file}: {e}") from e
            configs.extend(_parse_config_list(config_data, config_file, default_interval))
        logger.info(f"Loaded {len(configs)} config(s) from {len(config_files)} file(s)")
        return configs

    if configs_json:
        try:
            raw = json.loads(configs_json)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse DYNDNS_CONFIGS JSON: {e}") from e
        return _parse_config_list(raw, "DYNDNS_CONFIGS", default_interval)

    env = env if env is not None else dict(os.environ)
    if env.get("NAMECOM_DOMAIN", "").strip():
        return [
            parse_domain_config(
                {
                    "domain": env.get("NAMECOM_DOMAIN"),
                    "hostnames": env.get("NAMECOM_HOSTNAMES", ""),
                    "username": env.get("NAMECOM_USERNAME"),
                    "token": env.get("NAMECOM_TOKEN"),
                    "dev": env.get("NAMECOM_DEV"),
                },
                default_interval=default_interval,
            )
        ]

    raise ConfigurationError(
        "No configuration found (set DYNDNS_CONFIG_PATH, DYNDNS_CONFIGS or NAMECOM_DOMAIN)"
    )


# =============================================================================
# Core Reconciler
# =============================================================================


class DynDNSReconciler:
    """Keeps the A/AAAA records of one domain pointed at this host."""

    def __init__(
        self,
        *,
        config: DomainConfig,
        dns_provider: DNSProvider,
        ip_resolver: IPResolver,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.dns_provider = dns_provider
        self.ip_resolver = ip_resolver
        self.stop_event = stop_event or threading.Event()

    def matches(self, fqdn: str) -> bool:
        return self.config.matches(fqdn)

    def sync_once(self) -> SyncResult:
        """Run one resolve -> fetch -> match -> update pass."""
        domain = self.config.domain
        result = SyncResult(domain=domain)

        addresses = self.ip_resolver.resolve()
        if addresses.is_empty():
            result.error = "no public address could be resolved"
            logger.error(f"[{domain}] Failed to resolve any public address, skipping update")
            return result
        logger.info(
            f"[{domain}] Resolved addresses: ipv4={addresses.ipv4 or '-'} ipv6={addresses.ipv6 or '-'}"
        )

        try:
            records = self.dns_provider.list_records(domain)
        except ProviderError as e:
            result.error = str(e)
            logger.error(f"[{domain}] Failed to retrieve records: {e}")
            return result

        for record in records:
            if not self.matches(record.fqdn):
                logger.debug(f"[{domain}] Skipping unmanaged record {record.fqdn} ({record.type})")
                continue

            address = addresses.for_record_type(record.type)
            if address is None or record.answer == address:
                result.unchanged += 1
                continue

            updated = replace(record, answer=address)
            logger.info(
                f"[{domain}] Updating {record.fqdn} {record.type}: {record.answer} -> {address}"
            )
            try:
                self.dns_provider.update_record(updated)
            except ProviderError as e:
                result.failed.append(record.fqdn)
                logger.error(f"[{domain}] Failed to update {record.fqdn} with {address}: {e}")
                continue
            result.updated.append(record.fqdn)

        result.completed = True
        logger.info(
            f"[{domain}] Update complete: {len(result.updated)} updated, "
            f"{len(result.failed)} failed, {result.unchanged} unchanged"
        )
        return result

    def run(self, daemon: bool) -> SyncResult:
        """Run passes until done.

        In one-shot mode a single pass runs whatever its outcome. In daemon
        mode the loop waits the configured interval after every pass and only
        exits once the stop event is set.
        """
        domain = self.config.domain
        interval = self.config.interval_seconds
        result = SyncResult(domain=domain, error="stopped before first pass")

        while not self.stop_event.is_set():
            result = self.sync_once()

            if not daemon:
                if not result.completed:
                    logger.warning(f"[{domain}] Giving up.")
                return result

            if result.completed:
                logger.info(f"[{domain}] Will update again in {interval} seconds")
            else:
                logger.info(f"[{domain}] Will retry in {interval} seconds")
            if self.stop_event.wait(interval):
                break

        logger.info(f"[{domain}] Stopped")
        return result


# =============================================================================
# Runner
# =============================================================================


class DynDNSRunner:
    """Runs one reconciler per config concurrently and waits for all of them."""

    def __init__(
        self,
        configs: Sequence[DomainConfig],
        *,
        daemon: bool,
        ipv4_mirrors: Sequence[str] = tuple(DEFAULT_IPV4_MIRRORS),
        ipv6_mirrors: Sequence[str] = tuple(DEFAULT_IPV6_MIRRORS),
        provider_factory: Callable[[DomainConfig], DNSProvider] = create_dns_provider,
        resolver_factory: Optional[Callable[[], IPResolver]] = None,
        timeout_seconds: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.configs = list(configs)
        self.daemon = daemon
        self.ipv4_mirrors = tuple(ipv4_mirrors)
        self.ipv6_mirrors = tuple(ipv6_mirrors)
        self.provider_factory = provider_factory
        self.resolver_factory = resolver_factory or (
            lambda: IPResolver(self.ipv4_mirrors, self.ipv6_mirrors, timeout_seconds)
        )
        self.stop_event = threading.Event()

    def stop(self) -> None:
        """Ask every reconciler to stop at its next checkpoint."""
        self.stop_event.set()

    def run(self) -> List[SyncResult]:
        """Run every config and block until all of them have finished."""
        if not self.configs:
            return []

        with ThreadPoolExecutor(
            max_workers=len(self.configs), thread_name_prefix="dyndns"
        ) as executor:
            futures = [executor.submit(self._run_config, config) for config in self.configs]
            try:
                pending = set(futures)
                while pending:
                    _, pending = wait(pending, timeout=1.0)
            except KeyboardInterrupt:
                logger.info("Shutting down gracefully...")
                self.stop()
                wait(futures)

        results: List[SyncResult] = []
        for config, future in zip(self.configs, futures):
            try:
                results.append(future.result())
            except Exception as e:
                logger.error(f"[{config.domain}] Reconciler crashed: {e}", exc_info=True)
                results.append(SyncResult(domain=config.domain, error=str(e)))
        return results

    def _run_config(self, config: DomainConfig) -> SyncResult:
        reconciler = DynDNSReconciler(
            config=config,
            dns_provider=self.provider_factory(config),
            ip_resolver=self.resolver_factory(),
            stop_event=self.stop_event,
        )
        return reconciler.run(self.daemon)


# =============================================================================
# Main
# =============================================================================


def main():
    """Main entry point."""
    if SYNC_MODE not in ("once", "daemon"):
        logger.error(f"Invalid SYNC_MODE: {SYNC_MODE}. Use 'once' or 'daemon'")
        sys.exit(1)

    try:
        configs = load_configs(
            config_path=DYNDNS_CONFIG_PATH,
            configs_json=DYNDNS_CONFIGS,
            default_interval=POLL_INTERVAL_SECONDS,
        )
    except ConfigurationError as e:
        logger.error(f"Configuration validation failed: {e}")
        sys.exit(1)

    ipv4_mirrors = _parse_url_list(IPV4_MIRRORS, DEFAULT_IPV4_MIRRORS)
    ipv6_mirrors = _parse_url_list(IPV6_MIRRORS, DEFAULT_IPV6_MIRRORS)

    logger.info(f"name-dyndns: {len(configs)} domain(s), sync mode: {SYNC_MODE}")
    for config in configs:
        hostnames = ", ".join(h or "@" for h in config.hostnames)
        logger.info(
            f"Domain {config.domain} [{config.environment.value}]: {hostnames} "
            f"every {config.interval_seconds}s"
        )
    logger.info(f"IPv4 mirrors: {', '.join(ipv4_mirrors)}")
    logger.info(f"IPv6 mirrors: {', '.join(ipv6_mirrors)}")

    runner = DynDNSRunner(
        configs,
        daemon=SYNC_MODE == "daemon",
        ipv4_mirrors=ipv4_mirrors,
        ipv6_mirrors=ipv6_mirrors,
        timeout_seconds=HTTP_TIMEOUT_SECONDS,
    )

    def handle_sigterm(signum, frame):
        logger.info("Received SIGTERM, shutting down...")
        runner.stop()

    signal.signal(signal.SIGTERM, handle_sigterm)

    results = runner.run()
    if SYNC_MODE == "once" and not all(r.completed and not r.failed for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
