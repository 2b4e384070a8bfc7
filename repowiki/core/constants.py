"""Shared constants for RepoWiki.

Status vocabularies and pipeline defaults used across the ingestion,
incremental update, translation and knowledge-map modules.
"""

# =============================================================================
# Warehouse
# =============================================================================

WAREHOUSE_PENDING = "pending"
WAREHOUSE_PROCESSING = "processing"
WAREHOUSE_COMPLETED = "completed"
WAREHOUSE_FAILED = "failed"

WAREHOUSE_TYPE_GIT = "git"
WAREHOUSE_TYPE_FILE = "file"

# =============================================================================
# Translation
# =============================================================================

TASK_PENDING = "pending"
TASK_RUNNING = "running"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"
TASK_CANCELLED = "cancelled"

IN_FLIGHT_STATUSES = (TASK_PENDING, TASK_RUNNING)
TERMINAL_STATUSES = (TASK_COMPLETED, TASK_FAILED, TASK_CANCELLED)

TASK_TYPE_REPOSITORY = "repository"
TASK_TYPE_CATALOG = "catalog"

DEFAULT_SOURCE_LANGUAGE = "en-US"

ORPHANED_TASK_MESSAGE = "Interrupted by service restart"

SUPPORTED_LANGUAGES = [
    {"code": "en-US", "name": "English (US)"},
    {"code": "zh-CN", "name": "简体中文"},
    {"code": "zh-TW", "name": "繁體中文"},
    {"code": "ja-JP", "name": "日本語"},
    {"code": "ko-KR", "name": "한국어"},
    {"code": "fr-FR", "name": "Français"},
    {"code": "de-DE", "name": "Deutsch"},
    {"code": "es-ES", "name": "Español"},
    {"code": "ru-RU", "name": "Русский"},
    {"code": "pt-BR", "name": "Português (Brasil)"},
    {"code": "it-IT", "name": "Italiano"},
    {"code": "ar-SA", "name": "العربية"},
    {"code": "hi-IN", "name": "हिन्दी"},
]

# =============================================================================
# Incremental sync records
# =============================================================================

SYNC_IN_PROGRESS = "in_progress"
SYNC_SUCCESS = "success"
SYNC_FAILED = "failed"
SYNC_NOOP = "noop"
SYNC_CANCELLED = "cancelled"

SYNC_TRIGGER_AUTO = "auto"
SYNC_TRIGGER_MANUAL = "manual"

# =============================================================================
# Pipeline defaults
# =============================================================================

DEFAULT_UPDATE_INTERVAL_DAYS = 5
LLM_MAX_ATTEMPTS = 3
LLM_RETRY_FACTOR_SECONDS = 2.0
DEFAULT_LLM_TIMEOUT_SECONDS = 300.0
