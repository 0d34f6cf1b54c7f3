"""
FHIR Module

Generic FHIR R4 resource building, before any guide specialization.
"""

from fhir_specialization.fhir.builder import BaseResourceBuilder

__all__ = [
    "BaseResourceBuilder",
]
