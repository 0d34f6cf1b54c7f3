"""
Pytest Configuration and Shared Fixtures

Copyright (c) 2024 Cleansheet LLC
License: CC BY 4.0
"""

import json
from pathlib import Path
from typing import Any

import pytest

from fhir_specialization.bundle import BundleContext
from fhir_specialization.lookups import LookupTables, load_lookup_tables
from fhir_specialization.records import PatientRecord, PersonProfile


# =============================================================================
# RANDOM SOURCE
# =============================================================================


class ScriptedRandom:
    """Random source replaying scripted draws.

    Once the script is used up, ``random()`` returns 0.999 (no variation
    applies unless its probability is 1) and ``integers()`` returns its
    lower bound.
    """

    def __init__(self, floats: list[float] | None = None, ints: list[int] | None = None):
        self.floats = list(floats or [])
        self.ints = list(ints or [])
        self.float_calls = 0
        self.int_calls = 0

    def random(self) -> float:
        self.float_calls += 1
        return self.floats.pop(0) if self.floats else 0.999

    def integers(self, low: int, high: int | None = None) -> int:
        self.int_calls += 1
        if self.ints:
            return self.ints.pop(0)
        return 0 if high is None else low


@pytest.fixture
def scripted_random():
    """Factory for scripted random sources."""
    return ScriptedRandom


# =============================================================================
# PERSON / RECORD FIXTURES
# =============================================================================


@pytest.fixture
def provider_dict() -> dict[str, Any]:
    return {
        "id": "prov-1",
        "name": "Lübeck General",
        "address": "1 Hospital Platz",
        "city": "Lübeck",
        "state": "Schleswig-Holstein",
        "postal_code": "23552",
        "phone": "0451-500-0",
        "latitude": 53.8655,
        "longitude": 10.6866,
    }


@pytest.fixture
def clinician_dict(provider_dict: dict) -> dict[str, Any]:
    return {
        "id": "9999912345",
        "given": "Hans",
        "family": "Beispiel",
        "organization": provider_dict,
    }


@pytest.fixture
def person_dict(provider_dict: dict) -> dict[str, Any]:
    """Person with every identifier and a salutation plus academic suffix."""
    return {
        "id": "person-1",
        "given": "Maria",
        "family": "Muster",
        "sex": "F",
        "birth_date": "1970-05-17",
        "seed": 42,
        "race": "black",
        "ethnicity": "hispanic",
        "prefix": "Mrs.",
        "suffix": "PhD",
        "address": "42 Example Allee",
        "city": "Lübeck",
        "state": "Massachusetts",
        "postal_code": "23552",
        "country": "DE",
        "ssn": "999-12-3456",
        "drivers_license": "S99912345",
        "passport": "X123456789",
        "mrn": "mrn-0001",
        "phone": "555-123-4567",
        "provider": provider_dict,
    }


@pytest.fixture
def person(person_dict: dict) -> PersonProfile:
    return PersonProfile.from_dict(person_dict)


@pytest.fixture
def record_dict(person_dict: dict, provider_dict: dict, clinician_dict: dict) -> dict[str, Any]:
    """Two encounters covering every fact kind."""
    loinc = "http://loinc.org"
    snomed = "http://snomed.info/sct"
    return {
        "person": person_dict,
        "stop_time": "2021-01-01T00:00:00",
        "facts": [
            {
                "kind": "encounter",
                "id": "enc-1",
                "start": "2020-03-01T09:00:00",
                "stop": "2020-03-01T09:30:00",
                "category": "wellness",
                "codes": [{"system": snomed, "code": "410620009", "display": "Well child visit"}],
                "provider": provider_dict,
                "clinician": clinician_dict,
                "attributes": {"cost": 125.5, "payer": "AOK"},
            },
            {
                "kind": "condition",
                "id": "cond-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:05:00",
                "codes": [{"system": snomed, "code": "444814009", "display": "Viral sinusitis"}],
            },
            {
                "kind": "allergy",
                "id": "allergy-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:06:00",
                "category": "food",
                "codes": [{"system": snomed, "code": "91935009", "display": "Allergy to peanuts"}],
            },
            {
                "kind": "observation",
                "id": "obs-hr",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:07:00",
                "category": "vital-signs",
                "codes": [{"system": loinc, "code": "8867-4", "display": "Heart rate"}],
                "value": 72,
                "unit": "/min",
            },
            {
                "kind": "observation",
                "id": "obs-smoke",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:08:00",
                "category": "survey",
                "codes": [{"system": loinc, "code": "72166-2", "display": "Tobacco smoking status"}],
                "value": {"system": snomed, "code": "266919005", "display": "Never smoker"},
            },
            {
                "kind": "observation",
                "id": "obs-glucose",
                "encounter_id": "enc-1",
                "report_id": "report-1",
                "start": "2020-03-01T09:09:00",
                "category": "laboratory",
                "codes": [{"system": loinc, "code": "2339-0", "display": "Glucose"}],
                "value": 91.2,
                "unit": "mg/dL",
            },
            {
                "kind": "procedure",
                "id": "proc-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:10:00",
                "stop": "2020-03-01T09:15:00",
                "codes": [{"system": snomed, "code": "430193006", "display": "Medication reconciliation"}],
            },
            {
                "kind": "device",
                "id": "device-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:11:00",
                "codes": [{"system": snomed, "code": "72506001", "display": "Implantable defibrillator"}],
                "attributes": {"udi": "(01)51022222233336(11)141231(17)150707(10)A213B1(21)1234"},
            },
            {
                "kind": "supply",
                "id": "supply-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:12:00",
                "codes": [{"system": snomed, "code": "337388004", "display": "Blood glucose testing strips"}],
                "value": 50,
            },
            {
                "kind": "medication",
                "id": "med-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:13:00",
                "codes": [{"system": "RxNorm", "code": "313782", "display": "Acetaminophen 325 MG Oral Tablet"}],
                "clinician": clinician_dict,
                "attributes": {"administration": True, "dosage": "1 tablet every 6 hours"},
            },
            {
                "kind": "immunization",
                "id": "imm-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:14:00",
                "codes": [{"system": "http://hl7.org/fhir/sid/cvx", "code": "140", "display": "Influenza"}],
            },
            {
                "kind": "report",
                "id": "report-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:16:00",
                "codes": [{"system": loinc, "code": "51990-0", "display": "Basic metabolic panel"}],
            },
            {
                "kind": "care_plan",
                "id": "plan-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:17:00",
                "codes": [{"system": snomed, "code": "699728000", "display": "Asthma self management"}],
                "clinician": clinician_dict,
                "provider": provider_dict,
                "attributes": {
                    "goals": ["Asthma never causes daytime symptoms"],
                    "activities": [{"system": snomed, "code": "710081004", "display": "Smoking cessation therapy"}],
                },
            },
            {
                "kind": "imaging_study",
                "id": "img-1",
                "encounter_id": "enc-1",
                "start": "2020-03-01T09:18:00",
                "codes": [{"system": snomed, "code": "399208008", "display": "Chest X-ray"}],
                "attributes": {
                    "modality": {"code": "DX", "display": "Digital Radiography"},
                    "body_site": {"code": "51185008", "display": "Thoracic structure"},
                },
            },
            {
                "kind": "encounter",
                "id": "enc-2",
                "start": "2020-09-01T10:00:00",
                "stop": "2020-09-01T10:20:00",
                "category": "ambulatory",
                "codes": [{"system": snomed, "code": "185345009", "display": "Encounter for symptom"}],
                "clinician": clinician_dict,
            },
            {
                "kind": "condition",
                "id": "cond-2",
                "encounter_id": "enc-2",
                "start": "2020-09-01T10:05:00",
                "codes": [{"system": snomed, "code": "10509002", "display": "Acute bronchitis"}],
            },
        ],
    }


@pytest.fixture
def record(record_dict: dict) -> PatientRecord:
    return PatientRecord.from_dict(record_dict)


@pytest.fixture
def record_factory(record_dict: dict):
    """Build a fresh record, so every export starts from the same seed."""

    def factory(**person_overrides: Any) -> PatientRecord:
        data = json.loads(json.dumps(record_dict))
        data["person"].update(person_overrides)
        return PatientRecord.from_dict(data)

    return factory


@pytest.fixture
def record_file(tmp_path: Path, record_dict: dict) -> Path:
    path = tmp_path / "person-1.json"
    path.write_text(json.dumps(record_dict), encoding="utf-8")
    return path


# =============================================================================
# LOOKUP / CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def lookups() -> LookupTables:
    """The lookup tables shipped with the package."""
    return load_lookup_tables()


@pytest.fixture
def context(person: PersonProfile) -> BundleContext:
    from datetime import datetime

    return BundleContext(person=person, stop_time=datetime(2021, 1, 1))


# =============================================================================
# CONFIGURATION FIXTURES
# =============================================================================


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Sample pipeline configuration dictionary."""
    return {
        "name": "test-pipeline",
        "version": "1.0.0",
        "log_level": "debug",
        "export": {
            "guide": "de-kds",
            "bundle_type": "transaction",
            "indent": 4,
        },
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, sample_config_dict: dict) -> Path:
    """Create a temporary config file."""
    import yaml

    config_path = tmp_path / "config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(sample_config_dict, f)
    return config_path


# =============================================================================
# PATH FIXTURES
# =============================================================================


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
