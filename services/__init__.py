"""
Business logic services.

Each service handles one stage of the catalog import pipeline.
"""

from services.catalog_service import CatalogService, get_catalog_service
from services.import_session_service import ImportSessionService, get_import_session_service
from services.import_validation_service import (
    ImportValidationService,
    ValidationOutcome,
    get_import_validation_service,
)
from services.import_commit_service import (
    ImportCommitService,
    CommitResult,
    get_import_commit_service,
)
from services.import_lock_service import ImportLockRegistry, get_import_lock_registry
from services.import_event_service import (
    ImportEvent,
    ImportEventService,
    get_import_event_service,
)
from services.import_pipeline_service import ImportPipelineService, get_import_pipeline_service

__all__ = [
    "CatalogService",
    "get_catalog_service",
    "ImportSessionService",
    "get_import_session_service",
    "ImportValidationService",
    "ValidationOutcome",
    "get_import_validation_service",
    "ImportCommitService",
    "CommitResult",
    "get_import_commit_service",
    "ImportLockRegistry",
    "get_import_lock_registry",
    "ImportEvent",
    "ImportEventService",
    "get_import_event_service",
    "ImportPipelineService",
    "get_import_pipeline_service",
]
