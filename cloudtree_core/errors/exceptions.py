# =============================================================================
# cloudtree_core/errors/exceptions.py
# Custom Exception Hierarchy for the CloudTree Offline Core
# =============================================================================

from typing import Optional, Dict, Any


class CloudTreeError(Exception):
    """
    Base exception for all CloudTree errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "CT_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# LOCAL STORE EXCEPTIONS
# =============================================================================

class LocalStoreError(CloudTreeError):
    """Raised when the embedded database cannot be opened or written"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        db_path: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if db_path:
            details["db_path"] = db_path

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# REMOTE / SYNC EXCEPTIONS
# =============================================================================

class RemoteGatewayError(CloudTreeError):
    """Raised when a backend REST call fails (network error or non-2xx)"""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )


class IdentityMappingError(CloudTreeError):
    """Raised when an id cannot be translated between local and backend spaces"""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_id:
            details["entity_id"] = entity_id
        if entity_type:
            details["entity_type"] = entity_type

        super().__init__(
            message=message,
            code="IDMAP_001",
            details=details,
            **kwargs,
        )


class SyncError(CloudTreeError):
    """Raised when a single item cannot be pushed or pulled"""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        phase: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_id:
            details["entity_id"] = entity_id
        if phase:
            details["phase"] = phase

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(CloudTreeError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
