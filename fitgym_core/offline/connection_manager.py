# =============================================================================
# fitgym_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - tracks whether the remote store is reachable.

Features:
- Injectable probes for internet and backend reachability
- Periodic health checks (shorter interval while offline)
- Callbacks on status change; the SyncDrainer uses them to drain on reconnect
- Manual override (force_offline) and platform connectivity events
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)

Probe = Callable[[], bool]


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Internet and backend reachable
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but backend unavailable
    CHECKING = "checking"       # Currently checking status
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    backend_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


def tcp_probe(hosts: Sequence[Tuple[str, int]], timeout: float) -> Probe:
    """Probe that succeeds when any (host, port) accepts a TCP connection."""
    def probe() -> bool:
        for host, port in hosts:
            try:
                with socket.create_connection((host, port), timeout=timeout):
                    return True
            except OSError:
                continue
        return False
    return probe


DEFAULT_INTERNET_HOSTS = [
    ("8.8.8.8", 53),        # Google DNS
    ("1.1.1.1", 53),        # Cloudflare DNS
    ("208.67.222.222", 53), # OpenDNS
]


class ConnectionManager:
    """
    Connection status detection.

    Usage:
        manager = ConnectionManager(backend_url=config.supabase_url)
        manager.register_callback(on_change)
        manager.initialize()
        if manager.is_online:
            ...
    """

    def __init__(
        self,
        backend_url: Optional[str] = None,
        internet_probe: Optional[Probe] = None,
        backend_probe: Optional[Probe] = None,
        check_interval_online: float = 30.0,
        check_interval_offline: float = 10.0,
        timeout: float = 5.0,
    ):
        """
        Args:
            backend_url: Remote store URL; None means local-only (backend always "up")
            internet_probe: Overrides the default DNS-host TCP probe
            backend_probe: Overrides the default backend-host TCP probe
        """
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self._internet_probe = internet_probe or tcp_probe(DEFAULT_INTERNET_HOSTS, timeout)
        self._backend_probe = backend_probe or self._default_backend_probe(backend_url, timeout)
        self._state = ConnectionState()
        self._state_lock = threading.Lock()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self._forced_offline = False
        self._initialized = False

    @staticmethod
    def _default_backend_probe(backend_url: Optional[str], timeout: float) -> Probe:
        if not backend_url:
            # No backend configured - treat as available (local-only mode)
            return lambda: True
        parsed = urlparse(backend_url)
        if not parsed.hostname:
            return lambda: False
        port = parsed.port or (443 if parsed.scheme != "http" else 80)
        return tcp_probe([(parsed.hostname, port)], timeout)

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Check if we have full connectivity."""
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        """Check if we're completely offline."""
        return self._state.status == ConnectionStatus.OFFLINE

    def initialize(self, start_monitoring: bool = True) -> None:
        """
        Run the first check and optionally start background monitoring.
        """
        if self._initialized:
            return

        self.check_connection()

        if start_monitoring:
            self.start_monitoring()

        self._initialized = True
        logger.info(f"ConnectionManager initialized. Status: {self._state.status.value}")

    def check_connection(self) -> ConnectionState:
        """
        Perform a connection check and update state.

        Returns:
            Updated ConnectionState
        """
        if self._forced_offline:
            return self._state

        with self._state_lock:
            old_status = self._state.status
            self._state.status = ConnectionStatus.CHECKING
            self._state.last_check = datetime.now()

            try:
                internet_ok = bool(self._internet_probe())
                backend_ok = bool(self._backend_probe()) if internet_ok else False
                self._state.error_message = None
            except Exception as e:
                logger.debug(f"Connection probe failed: {e}")
                internet_ok = backend_ok = False
                self._state.error_message = str(e)

            self._state.internet_available = internet_ok
            self._state.backend_available = backend_ok

            if internet_ok and backend_ok:
                self._state.status = ConnectionStatus.ONLINE
                self._state.last_online = datetime.now()
                self._state.consecutive_failures = 0
            elif internet_ok:
                self._state.status = ConnectionStatus.DEGRADED
                self._state.consecutive_failures += 1
            else:
                self._state.status = ConnectionStatus.OFFLINE
                self._state.consecutive_failures += 1

            changed = old_status != self._state.status

        # Notify outside the lock; callbacks may query the manager
        if changed:
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify_callbacks()

        return self._state

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        """Background monitoring loop."""
        while not self._stop_monitoring.is_set():
            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )

            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks of status change."""
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def report_network_change(self, available: bool) -> ConnectionState:
        """
        Feed a platform connectivity event.

        Losing the network goes offline immediately; regaining it triggers a
        full check so the backend is verified before sync resumes.
        """
        if available:
            return self.check_connection()

        with self._state_lock:
            changed = self._state.status != ConnectionStatus.OFFLINE
            self._state.status = ConnectionStatus.OFFLINE
            self._state.internet_available = False
            self._state.backend_available = False
            self._state.last_check = datetime.now()
        if changed:
            self._notify_callbacks()
        return self._state

    def force_offline(self) -> None:
        """Force offline mode (user preference or tests) until resume()."""
        self._forced_offline = True
        with self._state_lock:
            self._state.status = ConnectionStatus.OFFLINE
            self._state.internet_available = False
            self._state.backend_available = False
        self._notify_callbacks()
        logger.info("Forced offline mode")

    def resume(self) -> ConnectionState:
        """Leave forced offline mode and re-check."""
        self._forced_offline = False
        return self.check_connection()

    def force_check(self) -> ConnectionState:
        """Force an immediate connection check."""
        return self.check_connection()

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "internet": self._state.internet_available,
            "backend": self._state.backend_available,
            "forced_offline": self._forced_offline,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
