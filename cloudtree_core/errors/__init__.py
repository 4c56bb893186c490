# =============================================================================
# cloudtree_core/errors/__init__.py
# Centralized Error Handling for the CloudTree Offline Core
# =============================================================================

from .exceptions import (
    CloudTreeError,
    LocalStoreError,
    RemoteGatewayError,
    IdentityMappingError,
    SyncError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
)

__all__ = [
    # Exceptions
    "CloudTreeError",
    "LocalStoreError",
    "RemoteGatewayError",
    "IdentityMappingError",
    "SyncError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
]
