"""Network reachability detection used to switch projgen into offline mode."""

from __future__ import annotations

import logging
import socket
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Optional, Sequence

from .logging import get_logger


DEFAULT_ENDPOINTS = (
    "https://www.google.com",
    "https://github.com",
    "https://registry.npmjs.org",
)

HttpProbe = Callable[[str, float], bool]
DnsProbe = Callable[[str, float], bool]


@dataclass
class OfflineDetectorConfig:
    check_interval: float = 30.0
    timeout: float = 5.0
    endpoints: Sequence[str] = DEFAULT_ENDPOINTS
    dns_host: str = "google.com"


def http_head_probe(url: str, timeout: float) -> bool:
    """Return True when ``url`` answers a HEAD request with a status below 500."""
    request = urllib.request.Request(url, method="HEAD", headers={"User-Agent": "projgen"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            status = getattr(response, "status", 200)
    except urllib.error.HTTPError as exc:
        status = exc.code
    except (urllib.error.URLError, OSError, ValueError):
        return False
    return 200 <= status < 500


def dns_lookup_probe(host: str, timeout: float) -> bool:
    """Return True when ``host`` resolves.

    ``getaddrinfo`` has no timeout of its own; the lookup runs on a daemon
    thread and is abandoned once ``timeout`` elapses.
    """
    outcome: list[bool] = []

    def _lookup() -> None:
        try:
            outcome.append(bool(socket.getaddrinfo(host, None)))
        except OSError:
            outcome.append(False)

    worker = threading.Thread(target=_lookup, name="projgen-dns-probe", daemon=True)
    worker.start()
    worker.join(timeout)
    return bool(outcome and outcome[0])


FORCED_OFFLINE_MESSAGE = (
    "Offline mode is enabled. External tools will not be downloaded and "
    "components will use cached tool information or fallback generators."
)
DETECTED_OFFLINE_MESSAGE = (
    "No network connectivity detected. Components that need network access "
    "will use fallback generators; re-run when online for full bootstrap support."
)
ONLINE_MESSAGE = "Network connectivity is available."


class OfflineDetector:
    """Answers "are we offline?" with a debounced network probe."""

    def __init__(
        self,
        config: OfflineDetectorConfig | None = None,
        *,
        logger: logging.Logger | None = None,
        http_probe: HttpProbe | None = None,
        dns_probe: DnsProbe | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or OfflineDetectorConfig()
        self._logger = logger or get_logger("offline")
        self._http_probe = http_probe or http_head_probe
        self._dns_probe = dns_probe or dns_lookup_probe
        self._clock = clock
        self._lock = threading.Lock()
        self._forced = False
        self._offline = False
        self._checked_at: Optional[float] = None
        self._last_check: Optional[datetime] = None

    @property
    def last_check(self) -> Optional[datetime]:
        with self._lock:
            return self._last_check

    def is_offline(self) -> bool:
        with self._lock:
            if self._forced:
                return True
            fresh = (
                self._checked_at is not None
                and self._clock() - self._checked_at < self._config.check_interval
            )
            if fresh:
                return self._offline
        # Probe outside the lock; two callers may probe at once.
        return self.check()

    def check(self) -> bool:
        """Probe the network now and record the answer."""
        offline = not self._probe()
        with self._lock:
            self._offline = offline
            self._checked_at = self._clock()
            self._last_check = datetime.now(UTC)
            forced = self._forced
        if offline:
            self._logger.info("Network unreachable; projgen will work offline")
        else:
            self._logger.debug("Network reachable")
        return forced or offline

    def force_offline(self, offline: bool) -> None:
        with self._lock:
            self._forced = offline
        if offline:
            self._logger.info("Offline mode forced")
        else:
            self.check()

    def get_offline_message(self) -> str:
        with self._lock:
            forced = self._forced
            offline = self._offline
        if forced:
            return FORCED_OFFLINE_MESSAGE
        if offline:
            return DETECTED_OFFLINE_MESSAGE
        return ONLINE_MESSAGE

    def _probe(self) -> bool:
        timeout = self._config.timeout
        for endpoint in self._config.endpoints:
            if self._http_probe(endpoint, timeout):
                return True
            self._logger.debug("Connectivity probe failed for %s", endpoint)
        return self._dns_probe(self._config.dns_host, timeout)


__all__ = [
    "DEFAULT_ENDPOINTS",
    "DETECTED_OFFLINE_MESSAGE",
    "FORCED_OFFLINE_MESSAGE",
    "ONLINE_MESSAGE",
    "OfflineDetector",
    "OfflineDetectorConfig",
    "dns_lookup_probe",
    "http_head_probe",
]
