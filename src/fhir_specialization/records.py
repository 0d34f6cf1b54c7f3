"""
Record Data Types

Data models for the read-only patient timeline consumed by the exporter.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping
import json

import numpy as np

from fhir_specialization.errors import RecordFormatError


class FactKind(str, Enum):
    """Kinds of clinical facts on a patient timeline."""

    ENCOUNTER = "encounter"
    CONDITION = "condition"
    ALLERGY = "allergy"
    OBSERVATION = "observation"
    PROCEDURE = "procedure"
    DEVICE = "device"
    SUPPLY = "supply"
    MEDICATION = "medication"
    IMMUNIZATION = "immunization"
    REPORT = "report"
    CARE_PLAN = "care_plan"
    IMAGING_STUDY = "imaging_study"


@dataclass(frozen=True)
class Code:
    """A coded clinical concept."""

    system: str
    code: str
    display: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Code":
        return cls(
            system=data["system"],
            code=str(data["code"]),
            display=data.get("display"),
        )


@dataclass(frozen=True)
class Provider:
    """A healthcare organization that hosts encounters."""

    id: str
    name: str
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Provider":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            address=data.get("address"),
            city=data.get("city"),
            state=data.get("state"),
            postal_code=data.get("postal_code"),
            phone=data.get("phone"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


@dataclass(frozen=True)
class Clinician:
    """A practitioner working for a provider."""

    id: str
    given: str
    family: str
    organization: Provider
    prefix: str | None = "Dr."

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.prefix, self.given, self.family) if p)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Clinician":
        return cls(
            id=str(data["id"]),
            given=data["given"],
            family=data["family"],
            organization=Provider.from_dict(data["organization"]),
            prefix=data.get("prefix", "Dr."),
        )


def _fact_value(value: Any) -> Any:
    # coded results arrive as {"system", "code", "display"}
    if isinstance(value, Mapping) and "code" in value:
        return Code.from_dict(value)
    return value


@dataclass(frozen=True)
class ClinicalFact:
    """Something that happened to a person, as decided by the simulation."""

    kind: FactKind
    fact_id: str
    start: datetime
    codes: tuple[Code, ...] = ()
    stop: datetime | None = None
    encounter_id: str | None = None
    provider: Provider | None = None
    clinician: Clinician | None = None
    category: str | None = None
    value: Any = None
    unit: str | None = None
    report_id: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> Code | None:
        """Primary code of the fact."""
        return self.codes[0] if self.codes else None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClinicalFact":
        stop = data.get("stop")
        provider = data.get("provider")
        clinician = data.get("clinician")

        try:
            return cls(
                kind=FactKind(data["kind"]),
                fact_id=str(data.get("id", "")),
                start=datetime.fromisoformat(data["start"]),
                codes=tuple(Code.from_dict(c) for c in data.get("codes", [])),
                stop=datetime.fromisoformat(stop) if stop else None,
                encounter_id=data.get("encounter_id"),
                provider=Provider.from_dict(provider) if provider else None,
                clinician=Clinician.from_dict(clinician) if clinician else None,
                category=data.get("category"),
                value=_fact_value(data.get("value")),
                unit=data.get("unit"),
                report_id=data.get("report_id"),
                attributes=dict(data.get("attributes", {})),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordFormatError(f"Invalid clinical fact {data.get('id')!r}: {e!r}") from e


@dataclass
class PersonProfile:
    """Demographic attributes of a simulated person.

    The ``random`` handle is seeded once from ``seed`` and shared by every
    generator acting on this person, so a fixed seed yields a fixed export.
    """

    id: str
    given: str
    family: str
    sex: str  # "M" or "F"
    birth_date: date
    seed: int
    race: str = "white"
    ethnicity: str = "nonhispanic"
    prefix: str | None = None  # salutation, e.g. "Mrs."
    suffix: str | None = None  # academic/professional, e.g. "PhD"
    deceased: datetime | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    ssn: str | None = None
    drivers_license: str | None = None
    passport: str | None = None
    mrn: str | None = None
    phone: str | None = None
    provider: Provider | None = None

    random: np.random.Generator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.random = np.random.default_rng(self.seed)

    @property
    def is_female(self) -> bool:
        return self.sex.upper() == "F"

    @property
    def log_prefix(self) -> str:
        """Short tag identifying this person in log output."""
        return f"[{self.given[:2]}-{self.family[:2]}]"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PersonProfile":
        """Create a profile from a record file dictionary."""
        missing = [k for k in ("id", "given", "family", "sex", "birth_date", "seed") if k not in data]
        if missing:
            raise RecordFormatError(f"Person is missing required fields: {', '.join(missing)}")

        deceased = data.get("deceased")
        provider = data.get("provider")
        try:
            birth_date = date.fromisoformat(data["birth_date"])
        except (TypeError, ValueError) as e:
            raise RecordFormatError(f"Invalid birth date {data['birth_date']!r}") from e

        try:
            return cls(
                id=str(data["id"]),
                given=data["given"],
                family=data["family"],
                sex=data["sex"],
                birth_date=birth_date,
                seed=int(data["seed"]),
                race=data.get("race", "white"),
                ethnicity=data.get("ethnicity", "nonhispanic"),
                prefix=data.get("prefix"),
                suffix=data.get("suffix"),
                deceased=datetime.fromisoformat(deceased) if deceased else None,
                address=data.get("address"),
                city=data.get("city"),
                state=data.get("state"),
                postal_code=data.get("postal_code"),
                country=data.get("country"),
                ssn=data.get("ssn"),
                drivers_license=data.get("drivers_license"),
                passport=data.get("passport"),
                mrn=data.get("mrn"),
                phone=data.get("phone"),
                provider=Provider.from_dict(provider) if provider else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordFormatError(f"Invalid person {data.get('id')!r}: {e!r}") from e


@dataclass
class PatientRecord:
    """A person plus the time-ordered facts of their simulated life."""

    person: PersonProfile
    facts: list[ClinicalFact] = field(default_factory=list)
    stop_time: datetime | None = None

    def __post_init__(self) -> None:
        self.facts = sorted(self.facts, key=lambda f: f.start)
        if self.stop_time is None:
            if self.facts:
                self.stop_time = max(f.stop or f.start for f in self.facts)
            else:
                self.stop_time = datetime(1970, 1, 1)

    @property
    def encounters(self) -> list[ClinicalFact]:
        return [f for f in self.facts if f.kind == FactKind.ENCOUNTER]

    def facts_for(self, encounter: ClinicalFact) -> list[ClinicalFact]:
        """Facts recorded during the given encounter, in time order."""
        return [
            f
            for f in self.facts
            if f.kind != FactKind.ENCOUNTER and f.encounter_id == encounter.fact_id
        ]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PatientRecord":
        if "person" not in data:
            raise RecordFormatError("Record is missing 'person'")
        stop_time = data.get("stop_time")
        try:
            stop_time = datetime.fromisoformat(stop_time) if stop_time else None
        except (TypeError, ValueError) as e:
            raise RecordFormatError(f"Invalid stop time {stop_time!r}") from e

        return cls(
            person=PersonProfile.from_dict(data["person"]),
            facts=[ClinicalFact.from_dict(f) for f in data.get("facts", [])],
            stop_time=stop_time,
        )


def load_record(record_path: str | Path) -> PatientRecord:
    """Load a patient record from a JSON file."""
    path = Path(record_path)

    if not path.exists():
        raise FileNotFoundError(f"Record file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise RecordFormatError(f"Record file {path} is not valid JSON: {e}") from e

    return PatientRecord.from_dict(data)
