from .pipeline import ExportConfig, ExportPipeline, RunState, RunSummary, load_export_config

__all__ = [
    "ExportConfig",
    "ExportPipeline",
    "RunState",
    "RunSummary",
    "load_export_config",
]
