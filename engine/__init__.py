from .acquisition import AcquisitionService, ResolutionResult
from .config import EngineConfig, SearchConfig, load_config, parse_config, validate_config
from .errors import AcquisitionError, http_status_for
from .paths import EnginePaths
from .runtime import EngineRuntime, start_engine
from .search_engine import SearchOrchestrator
from .selection_cache import InteractiveSelectionCache, PendingSelection
from .types import SearchAttemptResult, SearchContext

__all__ = [
    "AcquisitionError",
    "AcquisitionService",
    "EngineConfig",
    "EnginePaths",
    "EngineRuntime",
    "InteractiveSelectionCache",
    "PendingSelection",
    "ResolutionResult",
    "SearchAttemptResult",
    "SearchConfig",
    "SearchContext",
    "SearchOrchestrator",
    "http_status_for",
    "load_config",
    "parse_config",
    "start_engine",
    "validate_config",
]
