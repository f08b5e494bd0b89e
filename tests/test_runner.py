"""Unit tests for DynDNSRunner fan-out, join and shutdown."""

import threading
import time
from typing import List

from name_dyndns.cli import DNSRecord, DomainConfig, DNSProvider, DynDNSRunner, SyncResult

from test_reconciler import MockDNSProvider, StaticIPResolver, make_record


def make_config(domain: str, interval: int = 60) -> DomainConfig:
    return DomainConfig(
        domain=domain,
        hostnames=("",),
        username="alice",
        token="secret",
        interval_seconds=interval,
    )


class ProviderRegistry:
    """Provider factory handing each config its own mock provider."""

    def __init__(self, records: List[DNSRecord] | None = None, failing_domains=()):
        self.records = records or []
        self.failing_domains = set(failing_domains)
        self.providers: dict[str, MockDNSProvider] = {}
        self.lock = threading.Lock()

    def __call__(self, config: DomainConfig) -> DNSProvider:
        if config.domain == "crash.example":
            raise RuntimeError("provider construction failed")
        provider = MockDNSProvider(
            initial_records=[r for r in self.records if r.domain_name == config.domain],
            fail_list=config.domain in self.failing_domains,
        )
        with self.lock:
            self.providers[config.domain] = provider
        return provider


def test_run_once_runs_every_config_and_returns_results_in_order() -> None:
    registry = ProviderRegistry(
        records=[
            make_record(1, "", answer="9.9.9.9", domain="one.example"),
            make_record(2, "", answer="9.9.9.9", domain="two.example"),
        ]
    )
    runner = DynDNSRunner(
        [make_config("one.example"), make_config("two.example")],
        daemon=False,
        provider_factory=registry,
        resolver_factory=lambda: StaticIPResolver(ipv4="1.2.3.4"),
    )

    results = runner.run()

    assert [r.domain for r in results] == ["one.example", "two.example"]
    assert all(r.completed for r in results)
    assert registry.providers["one.example"] is not registry.providers["two.example"]
    for provider in registry.providers.values():
        assert [r.answer for r in provider.update_calls] == ["1.2.3.4"]


def test_run_once_failing_config_does_not_affect_others() -> None:
    registry = ProviderRegistry(
        records=[make_record(1, "", answer="9.9.9.9", domain="ok.example")],
        failing_domains={"broken.example"},
    )
    runner = DynDNSRunner(
        [make_config("broken.example"), make_config("ok.example")],
        daemon=False,
        provider_factory=registry,
        resolver_factory=lambda: StaticIPResolver(ipv4="1.2.3.4"),
    )

    broken, ok = runner.run()

    assert broken.completed is False
    assert ok.completed is True
    assert ok.updated == ["ok.example."]


def test_run_reports_crashed_reconciler_as_failed_result() -> None:
    registry = ProviderRegistry()
    runner = DynDNSRunner(
        [make_config("crash.example"), make_config("fine.example")],
        daemon=False,
        provider_factory=registry,
        resolver_factory=lambda: StaticIPResolver(ipv4="1.2.3.4"),
    )

    crashed, fine = runner.run()

    assert crashed == SyncResult(domain="crash.example", error="provider construction failed")
    assert fine.completed is True


def test_run_without_configs_returns_immediately() -> None:
    assert DynDNSRunner([], daemon=True).run() == []


def test_daemon_runs_until_stopped() -> None:
    registry = ProviderRegistry()
    runner = DynDNSRunner(
        [make_config("one.example", interval=3600), make_config("two.example", interval=3600)],
        daemon=True,
        provider_factory=registry,
        resolver_factory=lambda: StaticIPResolver(ipv4="1.2.3.4"),
    )
    results: List[SyncResult] = []
    thread = threading.Thread(target=lambda: results.extend(runner.run()))
    thread.start()

    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        providers = list(registry.providers.values())
        if len(providers) == 2 and all(p.list_calls for p in providers):
            break
        time.sleep(0.01)
    runner.stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert [r.domain for r in results] == ["one.example", "two.example"]
    for provider in registry.providers.values():
        assert provider.list_calls == [provider.list_calls[0]]


def test_default_resolver_uses_configured_mirrors() -> None:
    runner = DynDNSRunner(
        [make_config("one.example")],
        daemon=False,
        ipv4_mirrors=["http://v4.mirror"],
        ipv6_mirrors=["http://v6.mirror"],
        timeout_seconds=2.5,
    )

    resolver = runner.resolver_factory()

    assert resolver.ipv4_mirrors == ("http://v4.mirror",)
    assert resolver.ipv6_mirrors == ("http://v6.mirror",)
    assert resolver is not runner.resolver_factory()
