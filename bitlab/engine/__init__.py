"""Budget-constrained execution of strategies over bit strings."""
from .catalog import Catalog, DataFileRegistry, SourceLibrary
from .executor import ExecutionEngine
from .models import EngineState, ExecutionContext, ExecutionResult, ExecutionStep
from .operations import OperationRegistry
from .policy import ScoringPolicyLoader
from .results import ResultHistory
from .runtimes import RuntimeDispatcher

__all__ = [
    "Catalog",
    "DataFileRegistry",
    "EngineState",
    "ExecutionContext",
    "ExecutionEngine",
    "ExecutionResult",
    "ExecutionStep",
    "OperationRegistry",
    "ResultHistory",
    "RuntimeDispatcher",
    "ScoringPolicyLoader",
    "SourceLibrary",
]
