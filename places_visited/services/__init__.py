"""Service layer package.

Exports high-level services consumed by the pipeline entry point.
"""

from .ingestion_service import (
    IngestionService,
    IngestionServiceConfig,
    discover_input_files,
)
from .region_service import RegionService, RegionServiceConfig

__all__ = [
    "IngestionService",
    "IngestionServiceConfig",
    "RegionService",
    "RegionServiceConfig",
    "discover_input_files",
]
