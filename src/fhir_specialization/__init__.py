"""
FHIR Specialization

Export simulated patient records as FHIR R4 bundles specialized for one
implementation guide (US Core or the German MII core dataset).

Usage:
    from fhir_specialization import ExportPipeline, load_record

    pipeline = ExportPipeline.for_guide("de-kds")
    context = pipeline.export(load_record("patient.json"))
    print(pipeline.to_json(context))

Author: Cleansheet LLC
License: CC BY 4.0
"""

from fhir_specialization.pipeline.pipeline import ExportPipeline, ExportResult
from fhir_specialization.pipeline.config import PipelineConfig
from fhir_specialization.records import PatientRecord, load_record

__version__ = "0.1.0"
__author__ = "Cleansheet LLC"
__license__ = "CC BY 4.0"

__all__ = [
    "ExportPipeline",
    "ExportResult",
    "PipelineConfig",
    "PatientRecord",
    "load_record",
    "__version__",
]
