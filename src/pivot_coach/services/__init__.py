"""Session orchestration services."""

from .orchestrator import CoachOrchestrator, Lane, OrchestratorPhase, build_lanes
from .state import SuggestionState

__all__ = ["CoachOrchestrator", "Lane", "OrchestratorPhase", "build_lanes", "SuggestionState"]
