"""
Identifier Filtering

Allow-list filters for Patient identifiers. Identifiers are kept unique by
(system, value) within one resource.
"""

from typing import Any, Iterable

from fhir_specialization.fhir.elements import has_coding

SYSTEM_V2_0203 = "http://terminology.hl7.org/CodeSystem/v2-0203"

Identifier = dict[str, Any]


def filter_by_system(
    identifiers: Iterable[Identifier], allowed_systems: Iterable[str]
) -> list[Identifier]:
    """Keep only identifiers whose system is on the allow-list."""
    allowed = set(allowed_systems)
    return [i for i in identifiers if i.get("system") in allowed]


def filter_by_type_or_system(
    identifiers: Iterable[Identifier],
    allowed_types: Iterable[tuple[str, str]],
    internal_system: str,
) -> list[Identifier]:
    """Keep identifiers with an allowed coded type or the internal system."""
    allowed_types = list(allowed_types)
    return [
        i
        for i in identifiers
        if i.get("system") == internal_system
        or any(has_coding(i.get("type"), system, code) for system, code in allowed_types)
    ]


def identifier_key(identifier: Identifier) -> tuple[str | None, str | None]:
    return identifier.get("system"), identifier.get("value")


def add_identifier(resource: dict[str, Any], identifier: Identifier) -> bool:
    """Append an identifier unless one with the same (system, value) exists."""
    existing = {identifier_key(i) for i in resource.get("identifier", [])}
    if identifier_key(identifier) in existing:
        return False
    resource.setdefault("identifier", []).append(identifier)
    return True


def set_identifiers(resource: dict[str, Any], identifiers: list[Identifier]) -> dict[str, Any]:
    """Replace the identifier list, dropping the element when empty."""
    if identifiers:
        resource["identifier"] = identifiers
    else:
        resource.pop("identifier", None)
    return resource
