"""Network reachability monitoring that triggers queue drains."""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

try:  # pragma: no cover - optional dependency
    import psutil  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    psutil = None  # type: ignore


class ConnectionStatus(Enum):
    CHECKING = "checking"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Transport(Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    WIRED = "wired"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class ConnectionInfo:
    status: ConnectionStatus
    transport: Transport = Transport.UNKNOWN
    last_check: Optional[datetime] = None
    consecutive_failures: int = 0

    @property
    def is_reachable(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


Probe = Callable[[], bool]
StatusListener = Callable[[ConnectionInfo], None]

_WIFI_PREFIXES = ("wl", "wlan", "wi-fi", "wifi", "airport")
_CELLULAR_PREFIXES = ("wwan", "rmnet", "pdp_ip", "ppp", "cellular", "mobile")
_WIRED_PREFIXES = ("eth", "en", "eno", "enp", "ens", "ethernet")


def classify_interface(name: str) -> Transport:
    lowered = name.lower()
    if lowered.startswith(_WIFI_PREFIXES):
        return Transport.WIFI
    if lowered.startswith(_CELLULAR_PREFIXES):
        return Transport.CELLULAR
    if lowered.startswith(_WIRED_PREFIXES):
        return Transport.WIRED
    return Transport.UNKNOWN


def detect_transport() -> Transport:
    """Best guess of the active transport from the interfaces that are up."""

    if psutil is None:
        return Transport.UNKNOWN
    try:
        stats = psutil.net_if_stats()
    except OSError as exc:  # pragma: no cover - runtime safeguard
        logger.debug("Interface stats unavailable: %s", exc)
        return Transport.UNKNOWN
    found = [classify_interface(name) for name, stat in stats.items() if stat.isup and not name.lower().startswith("lo")]
    for preferred in (Transport.WIRED, Transport.WIFI, Transport.CELLULAR):
        if preferred in found:
            return preferred
    return Transport.UNKNOWN


def tcp_probe(host: str = "8.8.8.8", port: int = 53, timeout: float = 3.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class ConnectivityMonitor:
    """Tracks reachability and fires the drain trigger when it returns.

    The monitor only reports transitions. Retry policy belongs to the queue.
    The first probe establishes the initial state without counting as a
    restore.
    """

    def __init__(
        self,
        probe: Probe | None = None,
        *,
        on_restored: Callable[[], object] | None = None,
        transport_detector: Callable[[], Transport] = detect_transport,
        interval: float = 15.0,
    ) -> None:
        self.probe = probe or tcp_probe
        self.on_restored = on_restored
        self.transport_detector = transport_detector
        self.interval = interval
        self._info = ConnectionInfo(status=ConnectionStatus.CHECKING)
        self._lock = threading.Lock()
        self._listeners: List[StatusListener] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def info(self) -> ConnectionInfo:
        with self._lock:
            return ConnectionInfo(
                status=self._info.status,
                transport=self._info.transport,
                last_check=self._info.last_check,
                consecutive_failures=self._info.consecutive_failures,
            )

    @property
    def is_reachable(self) -> bool:
        with self._lock:
            return self._info.is_reachable

    @property
    def transport(self) -> Transport:
        with self._lock:
            return self._info.transport

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def check_now(self) -> bool:
        try:
            reachable = bool(self.probe())
        except Exception as exc:
            logger.warning("Connectivity probe failed: %s", exc)
            reachable = False
        transport = self.transport_detector() if reachable else Transport.UNKNOWN
        self.update(reachable, transport)
        return reachable

    def update(self, reachable: bool, transport: Transport = Transport.UNKNOWN) -> None:
        """Apply an observation, notifying listeners on change."""

        with self._lock:
            old_status = self._info.status
            old_transport = self._info.transport
            self._info.last_check = datetime.utcnow()
            if reachable:
                self._info.status = ConnectionStatus.CONNECTED
                self._info.consecutive_failures = 0
            else:
                self._info.status = ConnectionStatus.DISCONNECTED
                self._info.consecutive_failures += 1
            self._info.transport = transport
            changed = old_status is not self._info.status or old_transport is not transport
            restored = reachable and old_status is ConnectionStatus.DISCONNECTED
        if changed:
            if reachable:
                logger.info("Connectivity: online (%s)", transport.value)
            else:
                logger.warning("Connectivity: offline")
            snapshot = self.info
            for listener in list(self._listeners):
                try:
                    listener(snapshot)
                except Exception as exc:  # pragma: no cover - listener safeguard
                    logger.warning("Connectivity listener failed: %s", exc)
        if restored and self.on_restored is not None:
            logger.info("Connectivity restored, triggering queue drain")
            try:
                self.on_restored()
            except Exception as exc:
                logger.error("Drain trigger failed: %s", exc)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="connectivity-monitor", daemon=True)
        self._thread.start()
        logger.info("Connectivity monitoring started (every %ss)", self.interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
        logger.info("Connectivity monitoring stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.check_now()
            self._stop.wait(self.interval)
