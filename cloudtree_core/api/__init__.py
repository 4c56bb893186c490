"""
Soil Backend API Module
Provides the REST connector for the soil/parameter backend and its configuration
"""

from .base_connector import BaseAPIConnector, APIConfig
from .soil_connector import SoilAPIConnector
from .config_manager import APIConfigManager

__all__ = [
    # Base classes
    "BaseAPIConnector",
    "APIConfig",
    "APIConfigManager",

    # Soil backend
    "SoilAPIConnector",
]
