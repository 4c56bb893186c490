# =============================================================================
# cloudtree_core/offline/connection_manager.py
# Backend Reachability Detection and Offline-Mode Preference
# =============================================================================
"""
ConnectionManager - decides whether the soil backend should be used.

Features:
- Short-timeout reachability probe against the backend itself
- Persisted "offline mode" user preference that forces local-only behavior
- Event callbacks for status changes

effective-online = not offline_mode and backend reachable
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional
import logging

import requests

if TYPE_CHECKING:
    from cloudtree_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"                   # Backend answered below 5xx
    OFFLINE = "offline"                 # Timeout, network error or 5xx
    FORCED_OFFLINE = "forced_offline"   # User preference, no probe made
    UNKNOWN = "unknown"                 # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Connectivity oracle for the data service and sync engine.

    Usage:
        manager = ConnectionManager(local_db, "http://cloudtree.local:8000")
        if manager.is_effective_online():
            # Use the backend
        else:
            # Use local fallback
    """

    OFFLINE_MODE_KEY = "offline_mode"
    PROBE_ENDPOINT = "soils"
    CONNECTION_TIMEOUT = 3      # Seconds; kept well below the gateway timeout
    SERVER_ERROR_THRESHOLD = 500

    def __init__(
        self,
        local_db: LocalDatabase,
        base_url: str,
        timeout: float = CONNECTION_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self._local_db = local_db
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._state.status

    # =========================================================================
    # REACHABILITY
    # =========================================================================

    def check_connectivity(self) -> bool:
        """
        Probe the backend with a lightweight GET.

        Any response below 500 (including 4xx) means reachable; 5xx, timeout
        and network errors mean unreachable.
        """
        self._state.last_check = datetime.now()
        url = f"{self.base_url}/{self.PROBE_ENDPOINT}"

        try:
            response = self._session.get(url, timeout=self.timeout)
            reachable = response.status_code < self.SERVER_ERROR_THRESHOLD
            error = None if reachable else f"Backend returned {response.status_code}"
        except requests.exceptions.Timeout:
            reachable, error = False, "Backend connection timeout"
        except requests.exceptions.RequestException as e:
            reachable, error = False, f"Backend not reachable: {e}"

        if reachable:
            self._state.last_online = datetime.now()
            self._state.consecutive_failures = 0
            self._state.error_message = None
            self._set_status(ConnectionStatus.ONLINE)
        else:
            self._state.consecutive_failures += 1
            self._state.error_message = error
            logger.debug(error)
            self._set_status(ConnectionStatus.OFFLINE)

        return reachable

    def is_effective_online(self) -> bool:
        """Reachable AND not forced offline. No probe is made when forced."""
        if self.get_offline_mode():
            self._set_status(ConnectionStatus.FORCED_OFFLINE)
            return False
        return self.check_connectivity()

    # =========================================================================
    # OFFLINE MODE PREFERENCE
    # =========================================================================

    def get_offline_mode(self) -> bool:
        return bool(self._local_db.get_setting(self.OFFLINE_MODE_KEY, False))

    def set_offline_mode(self, offline: bool) -> None:
        self._local_db.set_setting(self.OFFLINE_MODE_KEY, bool(offline))
        logger.info(f"Offline mode {'enabled' if offline else 'disabled'}")
        if offline:
            self._set_status(ConnectionStatus.FORCED_OFFLINE)
        elif self._state.status == ConnectionStatus.FORCED_OFFLINE:
            self._set_status(ConnectionStatus.UNKNOWN)

    # =========================================================================
    # CALLBACKS & DISPLAY
    # =========================================================================

    def _set_status(self, status: ConnectionStatus) -> None:
        old_status = self._state.status
        self._state.status = status
        if old_status != status:
            logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
            self._notify_callbacks()

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
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "offline_mode": self.get_offline_mode(),
            "backend": self.base_url,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }

    def close(self) -> None:
        self._session.close()
