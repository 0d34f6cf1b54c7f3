"""
Name Enrichment

Reshape a generic (US-style) official name into German conventions:
salutations move out of the structured prefixes, academic suffixes become
qualified prefixes, and some persons receive nobility name parts.
"""

from typing import Any
import logging

from fhir_specialization.fhir.elements import (
    add_primitive_extension,
    extension,
)
from fhir_specialization.specialization.attributes import (
    GenderedChoice,
    RandomSource,
    draw_boolean,
    draw_choice,
    draw_gendered_choice,
)

logger = logging.getLogger(__name__)

EXTENSION_PREFIX_QUALIFIER = "http://hl7.org/fhir/StructureDefinition/iso21090-EN-qualifier"
EXTENSION_OWN_NAME = "http://hl7.org/fhir/StructureDefinition/humanname-own-name"
EXTENSION_OWN_PREFIX = "http://hl7.org/fhir/StructureDefinition/humanname-own-prefix"
EXTENSION_NAMENSZUSATZ = "http://fhir.de/StructureDefinition/humanname-namenszusatz"

SALUTATIONS = {"Mr.", "Mrs.", "Ms."}


class Chances:
    MAP_PHD = 0.5
    MAP_JD = 1.0
    MAP_MD = 0.5
    IS_NOBILITY = 0.3
    NOBILITY_HAS_PARTICLE = 0.95
    NOBILITY_HAS_TITLE = 0.25


# suffix → (chance of mapping, German prefixes)
ACADEMIC_TITLES: dict[str, tuple[float, list[str]]] = {
    "PhD": (Chances.MAP_PHD, ["Dr. phil.", "Dr. rer. nat.", "Dr.", "Dr. Dr. h.c."]),
    "JD": (Chances.MAP_JD, ["Dr. jur.", "Dr."]),
    "MD": (Chances.MAP_MD, ["Dr. med.", "Dr. dent.", "Dr."]),
}

NOBILITY_PARTICLES = [
    "von", "v.", "von und zu", "vom", "zum", "vom und zum",
    "von der", "von dem", "de", "van", "van der",
]

NOBILITY_TITLES = [
    GenderedChoice("Prinz", "Prinzessin"),
    GenderedChoice("Kurfürst", "Kurfürstin"),
    GenderedChoice("Herzog", "Herzogin"),
    GenderedChoice("Fürst", "Fürstin"),
    GenderedChoice("Graf", "Gräfin"),
    GenderedChoice("Freiherr", "Freifrau"),
    GenderedChoice("Baron", "Baronin"),
]


def official_name(patient: dict[str, Any]) -> dict[str, Any] | None:
    """The name with use 'official', if any."""
    return next((n for n in patient.get("name", []) if n.get("use") == "official"), None)


def _remove_list_items(name: dict[str, Any], field: str, drop: set[str]) -> None:
    """Remove values from a list field, keeping its ``_field`` shadow aligned."""
    values = name.get(field, [])
    shadow = name.get(f"_{field}")
    keep = [i for i, v in enumerate(values) if v not in drop]

    if keep:
        name[field] = [values[i] for i in keep]
    else:
        name.pop(field, None)

    if shadow is not None:
        kept_shadow = [shadow[i] for i in keep if i < len(shadow)]
        if any(s is not None for s in kept_shadow):
            name[f"_{field}"] = kept_shadow
        else:
            name.pop(f"_{field}", None)


def remove_salutations(name: dict[str, Any]) -> None:
    """Salutations belong in HumanName.text only, not in the prefixes."""
    _remove_list_items(name, "prefix", SALUTATIONS)


def map_academic_suffixes(name: dict[str, Any], rng: RandomSource) -> list[str]:
    """Turn foreign academic suffixes into AC-qualified German prefixes.

    Returns the prefixes that were added. A suffix that is not mapped stays
    untouched, so a name never carries both forms.
    """
    added: list[str] = []
    for suffix in list(name.get("suffix", [])):
        if suffix not in ACADEMIC_TITLES:
            continue
        chance, titles = ACADEMIC_TITLES[suffix]
        if not draw_boolean(rng, chance):
            continue
        prefix = draw_choice(rng, titles)
        _remove_list_items(name, "suffix", {suffix})
        name.setdefault("prefix", []).append(prefix)
        add_primitive_extension(
            name,
            "prefix",
            extension(EXTENSION_PREFIX_QUALIFIER, "Code", "AC"),
            index=len(name["prefix"]) - 1,
        )
        added.append(prefix)
    return added


def add_nobility(name: dict[str, Any], rng: RandomSource, feminine: bool) -> bool:
    """Decorate the family name with a nobility particle and/or title.

    Returns True when the family name was changed.
    """
    if not draw_boolean(rng, Chances.IS_NOBILITY):
        return False

    particle = draw_choice(rng, NOBILITY_PARTICLES, Chances.NOBILITY_HAS_PARTICLE)
    title = draw_gendered_choice(rng, NOBILITY_TITLES, feminine, Chances.NOBILITY_HAS_TITLE)
    if particle is None and title is None:
        return False

    family = name.get("family", "")
    add_primitive_extension(name, "family", extension(EXTENSION_OWN_NAME, "String", family))
    if title is not None:
        add_primitive_extension(name, "family", extension(EXTENSION_NAMENSZUSATZ, "String", title))
    if particle is not None:
        add_primitive_extension(name, "family", extension(EXTENSION_OWN_PREFIX, "String", particle))

    name["family"] = " ".join(p for p in (title, particle, family) if p)
    return True


def enrich_official_name(patient: dict[str, Any], rng: RandomSource, feminine: bool) -> dict[str, Any] | None:
    """Apply all German name conventions to the official name.

    Returns the modified name, or None when the patient has no official name.
    """
    name = official_name(patient)
    if name is None:
        logger.debug("No official name, skipping name enrichment")
        return None

    remove_salutations(name)
    mapped = map_academic_suffixes(name, rng)
    if mapped:
        logger.debug("Suffixes mapped to prefixes %s", mapped)
    if add_nobility(name, rng, feminine):
        logger.debug("Nobility, family name is now %s", name["family"])
    return name
