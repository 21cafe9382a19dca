"""Service layer for the auto-organization engine."""

from .block_metadata import block_id, ensure_metadata, mark_organized, unorganized_blocks
from .cache_manager import OrganizationCacheManager
from .completion import CompletionClient, parse_json_response, strip_code_fences
from .config import AppConfig, get_config, reload_config
from .content_processor import (
    QualityGate,
    apply_refinements,
    document_to_text,
    node_text,
    text_to_document,
)
from .database import DatabaseService, init_database
from .entity_store import EntityStore
from .errors import (
    ChunkValidationError,
    CompletionError,
    EntityNotFoundError,
    MergeFailure,
    OrganizerError,
    PathResolutionError,
    PersistenceError,
    RevertError,
    RoutingFailure,
)
from .file_tree import build_tree, serialize_tree
from .history import HistoryStore, RevertService
from .notifications import NotificationChannel
from .organization_applier import OrganizationApplier
from .organizer import OrganizationService, get_organization_service
from .path_resolver import PathResolver
from .prompt_loader import PromptLoader, PromptLoaderError
from .routing import RoutingPlanner
from .smart_merge import SmartMergeEngine, split_today_boundary
from .suggestions import SuggestionCache

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "DatabaseService",
    "init_database",
    "EntityStore",
    "block_id",
    "ensure_metadata",
    "mark_organized",
    "unorganized_blocks",
    "QualityGate",
    "apply_refinements",
    "document_to_text",
    "node_text",
    "text_to_document",
    "build_tree",
    "serialize_tree",
    "CompletionClient",
    "parse_json_response",
    "strip_code_fences",
    "PromptLoader",
    "PromptLoaderError",
    "RoutingPlanner",
    "PathResolver",
    "SmartMergeEngine",
    "split_today_boundary",
    "OrganizationApplier",
    "HistoryStore",
    "RevertService",
    "NotificationChannel",
    "OrganizationCacheManager",
    "SuggestionCache",
    "OrganizationService",
    "get_organization_service",
    "OrganizerError",
    "ChunkValidationError",
    "RoutingFailure",
    "PathResolutionError",
    "MergeFailure",
    "PersistenceError",
    "EntityNotFoundError",
    "RevertError",
    "CompletionError",
]
