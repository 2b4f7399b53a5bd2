"""Services package for sqlmodeler-mcp.

Main Components:
- ConfigService: Configuration and database connection management
- SourceRegistry: Data source resolution and engine cache

`ModelerService` and its singleton manager live in `services.modeler_service`
and `services.service_manager`.
"""

from .config_service import ConfigService, DataSourceConfig
from .sources import SourceRegistry

__all__ = [
    "ConfigService",
    "DataSourceConfig",
    "SourceRegistry",
]
