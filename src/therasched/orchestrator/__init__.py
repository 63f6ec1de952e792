from therasched.orchestrator.generation import (
    GenerationOrchestrator,
    RepairLoopResult,
    WeekContext,
    run_repair_loop,
)
from therasched.orchestrator.source import EntitySource

__all__ = [
    "EntitySource",
    "GenerationOrchestrator",
    "RepairLoopResult",
    "WeekContext",
    "run_repair_loop",
]
