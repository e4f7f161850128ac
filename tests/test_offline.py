"""Tests for projgen.offline."""

from __future__ import annotations

import urllib.error
import urllib.request

import pytest

from projgen.offline import OfflineDetector, OfflineDetectorConfig, http_head_probe
from tests._fixtures.doubles import StaticProbe


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _detector(http: StaticProbe, dns: StaticProbe, clock: FakeClock | None = None) -> OfflineDetector:
    config = OfflineDetectorConfig(check_interval=30.0, endpoints=("https://a.example", "https://b.example"))
    return OfflineDetector(config, http_probe=http, dns_probe=dns, clock=clock or FakeClock())


def test_online_when_any_http_endpoint_answers() -> None:
    http, dns = StaticProbe(True), StaticProbe(False)
    detector = _detector(http, dns)

    assert detector.is_offline() is False
    assert http.calls == 1
    assert dns.calls == 0
    assert detector.last_check is not None


def test_dns_fallback_only_after_every_http_probe_fails() -> None:
    http, dns = StaticProbe(False), StaticProbe(True)
    detector = _detector(http, dns)

    assert detector.is_offline() is False
    assert http.calls == 2
    assert dns.calls == 1


def test_offline_when_http_and_dns_fail() -> None:
    detector = _detector(StaticProbe(False), StaticProbe(False))

    assert detector.is_offline() is True
    assert "No network connectivity" in detector.get_offline_message()


def test_result_is_debounced_for_check_interval() -> None:
    http, dns = StaticProbe(True), StaticProbe(True)
    clock = FakeClock()
    detector = _detector(http, dns, clock)

    detector.is_offline()
    clock.now += 10
    detector.is_offline()
    assert http.calls == 1

    clock.now += 25
    http.reachable = False
    dns.reachable = False
    assert detector.is_offline() is True
    assert http.calls == 3


def test_force_offline_skips_network_checks() -> None:
    http, dns = StaticProbe(True), StaticProbe(True)
    detector = _detector(http, dns)

    detector.force_offline(True)

    assert detector.is_offline() is True
    assert http.calls == 0
    assert "Offline mode is enabled" in detector.get_offline_message()


def test_clearing_force_offline_rechecks_immediately() -> None:
    http, dns = StaticProbe(True), StaticProbe(True)
    detector = _detector(http, dns)
    detector.force_offline(True)

    detector.force_offline(False)

    assert http.calls == 1
    assert detector.is_offline() is False
    assert http.calls == 1
    assert detector.get_offline_message() == "Network connectivity is available."


class _Response:
    def __init__(self, status: int) -> None:
        self.status = status

    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


def _urlopen_raising(exc: Exception):
    def _urlopen(request, timeout=None):
        raise exc

    return _urlopen


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://a.example", code, "status", None, None)


def test_http_head_probe_counts_success_as_online(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = []

    def _urlopen(request, timeout=None):
        seen.append((request.get_method(), request.full_url, timeout))
        return _Response(200)

    monkeypatch.setattr(urllib.request, "urlopen", _urlopen)

    assert http_head_probe("https://a.example", 2.0) is True
    assert seen == [("HEAD", "https://a.example", 2.0)]


def test_http_head_probe_counts_client_errors_as_online(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(urllib.request, "urlopen", _urlopen_raising(_http_error(404)))
    assert http_head_probe("https://a.example", 1.0) is True


def test_http_head_probe_treats_server_errors_as_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(urllib.request, "urlopen", _urlopen_raising(_http_error(503)))
    assert http_head_probe("https://a.example", 1.0) is False


def test_http_head_probe_treats_unreachable_hosts_as_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(urllib.request, "urlopen", _urlopen_raising(urllib.error.URLError("no route")))
    assert http_head_probe("https://a.example", 1.0) is False


def test_dns_fallback_runs_after_http_server_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(urllib.request, "urlopen", _urlopen_raising(_http_error(502)))
    dns = StaticProbe(True)
    config = OfflineDetectorConfig(endpoints=("https://a.example", "https://b.example"))
    detector = OfflineDetector(config, dns_probe=dns, clock=FakeClock())

    assert detector.check() is False
    assert dns.calls == 1
