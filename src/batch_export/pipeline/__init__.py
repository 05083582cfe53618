from .config import ExportConfig, FieldRuleDef, StageName, load_export_config
from .context import RunContext
from .events import EventSink, EventType, make_event
from .report import RunSummary
from .runner import ExportPipeline, PipelineRun
from .stage import FunctionStage, Stage, StageResult, run_stage, skipped_stage
from .state import TERMINAL, RunState, RunStateMachine
from .types import Event

__all__ = [
    "Event",
    "EventSink",
    "EventType",
    "ExportConfig",
    "ExportPipeline",
    "FieldRuleDef",
    "FunctionStage",
    "PipelineRun",
    "RunContext",
    "RunState",
    "RunStateMachine",
    "RunSummary",
    "Stage",
    "StageName",
    "StageResult",
    "TERMINAL",
    "load_export_config",
    "make_event",
    "run_stage",
    "skipped_stage",
]
