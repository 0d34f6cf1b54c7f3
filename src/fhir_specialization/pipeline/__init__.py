"""
Pipeline Module

Per-person export orchestration and its configuration.
"""

from fhir_specialization.pipeline.pipeline import ExportPipeline, ExportResult
from fhir_specialization.pipeline.config import PipelineConfig, load_config

__all__ = [
    "ExportPipeline",
    "ExportResult",
    "PipelineConfig",
    "load_config",
]
