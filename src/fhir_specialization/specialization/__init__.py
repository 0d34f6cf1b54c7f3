"""
Implementation guide specializations.

One guide is active for a whole export run; select it by name.
"""

from fhir_specialization.lookups import LookupTables
from fhir_specialization.specialization.base import (
    OPTIONAL_KINDS,
    ResourceKind,
    Specialization,
)
from fhir_specialization.specialization.de_kds import DeKdsGuide
from fhir_specialization.specialization.us_core import UsCoreGuide

GUIDES: dict[str, type[Specialization]] = {
    UsCoreGuide.name: UsCoreGuide,
    DeKdsGuide.name: DeKdsGuide,
}


def get_specialization(name: str, lookups: LookupTables | None = None) -> Specialization:
    """Instantiate the guide registered under ``name``."""
    try:
        guide_class = GUIDES[name]
    except KeyError:
        available = ", ".join(sorted(GUIDES))
        raise ValueError(f"Unknown guide {name!r}. Available: {available}") from None
    return guide_class(lookups)


def list_guides() -> list[type[Specialization]]:
    return [GUIDES[name] for name in sorted(GUIDES)]


__all__ = [
    "OPTIONAL_KINDS",
    "ResourceKind",
    "Specialization",
    "UsCoreGuide",
    "DeKdsGuide",
    "GUIDES",
    "get_specialization",
    "list_guides",
]
