"""
Lookup Tables

Immutable code tables consumed by the implementation guides. Tables are read
once at startup and shared read-only by every export run.

Flow:
    config paths → load_lookup_tables() → LookupTables → guides
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping
import csv
import json
import logging

from fhir_specialization.errors import LookupTableError

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"

DEFAULT_MUNICIPALITY_CODES = DATA_DIR / "municipality_codes_de.csv"
DEFAULT_RACE_ETHNICITY_CODES = DATA_DIR / "race_ethnicity_codes.json"
DEFAULT_PROFILE_MAPPING = DATA_DIR / "us_core_mapping.csv"

LOINC_URI = "http://loinc.org"


# =============================================================================
# US state abbreviations (USPS)
# =============================================================================

US_STATE_ABBREVIATIONS: dict[str, str] = {
    "Alabama": "AL",
    "Alaska": "AK",
    "Arizona": "AZ",
    "Arkansas": "AR",
    "California": "CA",
    "Colorado": "CO",
    "Connecticut": "CT",
    "Delaware": "DE",
    "District of Columbia": "DC",
    "Florida": "FL",
    "Georgia": "GA",
    "Hawaii": "HI",
    "Idaho": "ID",
    "Illinois": "IL",
    "Indiana": "IN",
    "Iowa": "IA",
    "Kansas": "KS",
    "Kentucky": "KY",
    "Louisiana": "LA",
    "Maine": "ME",
    "Maryland": "MD",
    "Massachusetts": "MA",
    "Michigan": "MI",
    "Minnesota": "MN",
    "Mississippi": "MS",
    "Missouri": "MO",
    "Montana": "MT",
    "Nebraska": "NE",
    "Nevada": "NV",
    "New Hampshire": "NH",
    "New Jersey": "NJ",
    "New Mexico": "NM",
    "New York": "NY",
    "North Carolina": "NC",
    "North Dakota": "ND",
    "Ohio": "OH",
    "Oklahoma": "OK",
    "Oregon": "OR",
    "Pennsylvania": "PA",
    "Rhode Island": "RI",
    "South Carolina": "SC",
    "South Dakota": "SD",
    "Tennessee": "TN",
    "Texas": "TX",
    "Utah": "UT",
    "Vermont": "VT",
    "Virginia": "VA",
    "Washington": "WA",
    "West Virginia": "WV",
    "Wisconsin": "WI",
    "Wyoming": "WY",
    "Puerto Rico": "PR",
}


def _frozen(data: Mapping) -> Mapping:
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class LookupTables:
    """Read-only code tables shared by all export runs."""

    municipality_codes: Mapping[str, str] = field(default_factory=dict)
    race_ethnicity_codes: Mapping[str, str] = field(default_factory=dict)
    profile_mapping: Mapping[tuple[str, str], str] = field(default_factory=dict)
    state_abbreviations: Mapping[str, str] = field(default_factory=lambda: US_STATE_ABBREVIATIONS)

    def __post_init__(self) -> None:
        # frozen dataclass: bypass __setattr__ to wrap the mappings
        for name in ("municipality_codes", "race_ethnicity_codes", "profile_mapping", "state_abbreviations"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    def municipality_code(self, postal_code: str | None) -> str | None:
        """Official municipality code for a postal code, if known."""
        if not postal_code:
            return None
        return self.municipality_codes.get(postal_code)

    def race_ethnicity_code(self, key: str) -> str | None:
        return self.race_ethnicity_codes.get(key)

    def profile_for(self, system: str, code: str) -> str | None:
        """Profile URI a coded resource should claim, if mapped."""
        return self.profile_mapping.get((system, code))

    def state_abbreviation(self, state: str | None) -> str | None:
        if not state:
            return None
        if state.upper() in self.state_abbreviations.values():
            return state.upper()
        return self.state_abbreviations.get(state)


def load_municipality_codes(path: str | Path) -> dict[str, str]:
    """Load postal code → municipality code rows (other columns ignored)."""
    rows = _read_csv(path, required=("postal_code", "code"))
    return {row["postal_code"].strip(): row["code"].strip() for row in rows if row["code"]}


def load_race_ethnicity_codes(path: str | Path) -> dict[str, str]:
    """Load the flat race/ethnicity → numeric code mapping."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise LookupTableError(str(path), str(e)) from e

    if not isinstance(data, dict):
        raise LookupTableError(str(path), "expected a JSON object")

    return {str(k): str(v) for k, v in data.items()}


def load_profile_mapping(path: str | Path) -> dict[tuple[str, str], str]:
    """Load (coding system, code) → profile URI rows."""
    rows = _read_csv(path, required=("system", "code", "profile"))
    return {(row["system"].strip(), row["code"].strip()): row["profile"].strip() for row in rows}


def _read_csv(path: str | Path, required: tuple[str, ...]) -> list[dict[str, str]]:
    path = Path(path)
    try:
        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            missing = [c for c in required if c not in (reader.fieldnames or [])]
            if missing:
                raise LookupTableError(str(path), f"missing columns: {', '.join(missing)}")
            return list(reader)
    except OSError as e:
        raise LookupTableError(str(path), str(e)) from e


def load_lookup_tables(
    municipality_codes: str | Path = DEFAULT_MUNICIPALITY_CODES,
    race_ethnicity_codes: str | Path = DEFAULT_RACE_ETHNICITY_CODES,
    profile_mapping: str | Path = DEFAULT_PROFILE_MAPPING,
) -> LookupTables:
    """Load all lookup tables. Any failure is fatal for the whole run."""
    tables = LookupTables(
        municipality_codes=load_municipality_codes(municipality_codes),
        race_ethnicity_codes=load_race_ethnicity_codes(race_ethnicity_codes),
        profile_mapping=load_profile_mapping(profile_mapping),
    )
    logger.info(
        "Loaded lookup tables: %d municipality codes, %d race/ethnicity codes, %d profile mappings",
        len(tables.municipality_codes),
        len(tables.race_ethnicity_codes),
        len(tables.profile_mapping),
    )
    return tables
