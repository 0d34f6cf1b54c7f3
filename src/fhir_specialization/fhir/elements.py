"""
FHIR Element Helpers

Small builders for FHIR R4 JSON fragments. Extensions on primitive values are
stored in the parallel ``_field`` element, as FHIR JSON requires.
"""

from typing import Any


def coding(system: str, code: str, display: str | None = None) -> dict[str, Any]:
    """Create a Coding."""
    result = {"system": system, "code": code}
    if display:
        result["display"] = display
    return result


def codeable_concept(
    system: str, code: str, display: str | None = None, text: str | None = None
) -> dict[str, Any]:
    """Create a CodeableConcept with a single coding."""
    concept: dict[str, Any] = {"coding": [coding(system, code, display)]}
    if text or display:
        concept["text"] = text or display
    return concept


def has_coding(concept: dict[str, Any] | None, system: str, code: str) -> bool:
    """Whether a CodeableConcept carries the given coding."""
    if not concept:
        return False
    return any(
        c.get("system") == system and c.get("code") == code
        for c in concept.get("coding", [])
    )


def reference(url: str, display: str | None = None) -> dict[str, Any]:
    """Create a Reference."""
    result = {"reference": url}
    if display:
        result["display"] = display
    return result


def conformance_meta(profile: str, source: str | None = None) -> dict[str, Any]:
    """Meta claiming conformance to a StructureDefinition."""
    meta: dict[str, Any] = {"profile": [profile]}
    if source:
        meta["source"] = source
    return meta


def extension(url: str, value_type: str, value: Any) -> dict[str, Any]:
    """Create an extension, e.g. ``extension(url, "String", "42")``."""
    return {"url": url, f"value{value_type}": value}


def add_primitive_extension(
    element: dict[str, Any],
    field: str,
    ext: dict[str, Any],
    index: int | None = None,
) -> None:
    """Attach an extension to a primitive field (or one item of a list field)."""
    key = f"_{field}"
    if index is None:
        element.setdefault(key, {}).setdefault("extension", []).append(ext)
        return

    values = element.get(field, [])
    shadow = element.setdefault(key, [])
    while len(shadow) < len(values):
        shadow.append(None)
    if shadow[index] is None:
        shadow[index] = {}
    shadow[index].setdefault("extension", []).append(ext)


def primitive_extensions(
    element: dict[str, Any], field: str, index: int | None = None
) -> list[dict[str, Any]]:
    """Extensions attached to a primitive field."""
    shadow = element.get(f"_{field}")
    if shadow is None:
        return []
    if index is None:
        return shadow.get("extension", [])
    if index >= len(shadow) or shadow[index] is None:
        return []
    return shadow[index].get("extension", [])


def find_extension(extensions: list[dict[str, Any]], url: str) -> dict[str, Any] | None:
    """First extension with the given URL."""
    return next((e for e in extensions if e.get("url") == url), None)
