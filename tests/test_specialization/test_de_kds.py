"""
Tests for the German core dataset guide.

Copyright (c) 2024 Cleansheet LLC
License: CC BY 4.0
"""

import copy
from datetime import datetime
from typing import Any

import pytest

from fhir_specialization.bundle import BundleContext
from fhir_specialization.errors import AddressFormatError
from fhir_specialization.fhir.builder import BaseResourceBuilder
from fhir_specialization.fhir.elements import find_extension, has_coding, primitive_extensions
from fhir_specialization.records import PersonProfile
from fhir_specialization.specialization import DeKdsGuide, ResourceKind
from fhir_specialization.specialization.de_kds import (
    EXTENSION_ADXP_ADDITIONAL_LOCATOR,
    EXTENSION_ADXP_HOUSENUMBER,
    EXTENSION_ADXP_POSTBOX,
    EXTENSION_ADXP_STREETNAME,
    EXTENSION_DATA_ABSENT_REASON,
    EXTENSION_DESTATIS_AGS,
    EXTENSION_GENDER_AMTLICH_DE,
    NAMINGSYSTEM_GKV_KVID10,
    PROFILE_PATIENT,
    SYNTHEA_DE,
    SYNTHEA_SYSTEM,
    SYSTEM_IDENTIFIER_TYPE_DE_BASIS,
)
from fhir_specialization.specialization.identifiers import SYSTEM_V2_0203
from fhir_specialization.specialization.names import EXTENSION_OWN_NAME

# draws that decline every variation before the address step:
# PhD mapping, nobility, gender, birth date, deceased boolean
DECLINE_BEFORE_ADDRESS = [0.9, 0.9, 0.9, 0.9, 0.9]


@pytest.fixture
def guide(lookups) -> DeKdsGuide:
    return DeKdsGuide(lookups)


@pytest.fixture
def make_patient(person_dict: dict, scripted_random):
    """Build a generic Patient draft for a person with scripted draws."""

    def factory(floats=None, ints=None, **overrides: Any) -> tuple[dict, BundleContext]:
        person = PersonProfile.from_dict({**person_dict, **overrides})
        person.random = scripted_random(floats, ints)
        context = BundleContext(person=person, stop_time=datetime(2021, 1, 1))
        return BaseResourceBuilder().patient(person, context), context

    return factory


def _extend(guide: DeKdsGuide, patient: dict, context: BundleContext) -> dict:
    patient = guide.extend(ResourceKind.PATIENT, patient, None, context)
    return guide.forbid(ResourceKind.PATIENT, patient)


def _line_extensions(patient: dict) -> list[dict]:
    return primitive_extensions(patient["address"][0], "line", 0)


class TestHandles:
    """Tests for the restrictive kind coverage."""

    @pytest.mark.parametrize(
        "kind",
        [
            ResourceKind.PATIENT,
            ResourceKind.ENCOUNTER,
            ResourceKind.CONDITION,
            ResourceKind.OBSERVATION,
            ResourceKind.PROCEDURE,
            ResourceKind.MEDICATION_REQUEST,
        ],
    )
    def test_handled(self, guide: DeKdsGuide, kind: ResourceKind):
        """Test the kinds the guide has rules for."""
        assert guide.handles(kind)

    @pytest.mark.parametrize(
        "kind",
        [ResourceKind.ALLERGY, ResourceKind.IMMUNIZATION, ResourceKind.PROVENANCE, ResourceKind.LOCATION],
    )
    def test_not_handled(self, guide: DeKdsGuide, kind: ResourceKind):
        """Test that other kinds are left to the generic export."""
        assert not guide.handles(kind)

    def test_handled_kind_without_hook_passes_through(self, guide: DeKdsGuide, context: BundleContext):
        """Test that observations are claimed but not modified."""
        draft = {"resourceType": "Observation", "status": "final"}
        result = guide.forbid(
            ResourceKind.OBSERVATION, guide.extend(ResourceKind.OBSERVATION, copy.deepcopy(draft), None, context)
        )
        assert result == draft

    def test_condition_profile(self, guide: DeKdsGuide, context: BundleContext):
        """Test that conditions claim the diagnosis profile."""
        result = guide.extend(ResourceKind.CONDITION, {"resourceType": "Condition"}, None, context)
        assert result["meta"]["profile"][0].endswith("/modul-diagnose/StructureDefinition/Diagnose")
        assert result["meta"]["source"] == SYNTHEA_DE


class TestPatientIdentifiers:
    """Tests for identifier substitution and filtering."""

    def test_profile_and_source(self, guide: DeKdsGuide, make_patient):
        """Test the patient profile claim."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        assert result["meta"] == {"profile": [PROFILE_PATIENT], "source": SYNTHEA_DE}

    def test_foreign_identifiers_removed(self, guide: DeKdsGuide, make_patient):
        """Test that SSN, driver's licence and passport identifiers are dropped."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        systems = {i.get("system") for i in result["identifier"]}
        assert "http://hl7.org/fhir/sid/us-ssn" not in systems
        assert "urn:oid:2.16.840.1.113883.4.3.25" not in systems

    def test_insurance_numbers_added(self, guide: DeKdsGuide, make_patient):
        """Test the GKV identifier from the passport and PKV from the SSN."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        gkv = next(i for i in result["identifier"] if has_coding(i.get("type"), SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "GKV"))
        pkv = next(i for i in result["identifier"] if has_coding(i.get("type"), SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "PKV"))

        assert gkv["system"] == NAMINGSYSTEM_GKV_KVID10
        assert gkv["value"] == "X123456789"
        assert gkv["use"] == "official"
        assert gkv["assigner"]["identifier"]["value"] == "123456789"
        assert pkv["value"] == "999-12-3456"
        assert pkv["use"] == "secondary"

    def test_medical_record_number_is_usual(self, guide: DeKdsGuide, make_patient):
        """Test that the MRN gets use and assigner."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        mrn = next(i for i in result["identifier"] if has_coding(i.get("type"), SYSTEM_V2_0203, "MR"))
        assert mrn["use"] == "usual"
        assert mrn["assigner"] == {"reference": SYNTHEA_DE}

    def test_whitelist(self, guide: DeKdsGuide, make_patient):
        """Test that every identifier matches an allowed type or the internal system."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        allowed = [
            (SYSTEM_V2_0203, "MR"),
            (SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "GKV"),
            (SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "PKV"),
        ]
        for identifier in result["identifier"]:
            assert identifier.get("system") == SYNTHEA_SYSTEM or any(
                has_coding(identifier.get("type"), s, c) for s, c in allowed
            )

    def test_forbid_idempotent(self, guide: DeKdsGuide, make_patient):
        """Test that forbid after extend changes nothing further."""
        patient, context = make_patient()
        extended = guide.extend(ResourceKind.PATIENT, patient, None, context)
        once = guide.forbid(ResourceKind.PATIENT, copy.deepcopy(extended))
        twice = guide.forbid(ResourceKind.PATIENT, guide.forbid(ResourceKind.PATIENT, copy.deepcopy(extended)))

        assert once == twice == extended

    def test_identifiers_unique(self, guide: DeKdsGuide, make_patient):
        """Test that (system, value) pairs stay unique."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        keys = [(i.get("system"), i.get("value")) for i in result["identifier"]]
        assert len(keys) == len(set(keys))


class TestPatientAddress:
    """Tests for German address conventions."""

    def test_po_box(self, guide: DeKdsGuide, make_patient):
        """Test the PO box scenario."""
        patient, context = make_patient(
            floats=DECLINE_BEFORE_ADDRESS + [0.1, 0.9], ints=[4711], address="123 Main St"
        )
        result = _extend(guide, patient, context)

        address = result["address"][0]
        assert address["type"] == "postal"
        assert address["use"] == "home"
        assert address["line"] == ["Postfach 4711"]
        assert address["line"][0].startswith("Postfach ")

        extensions = _line_extensions(result)
        assert find_extension(extensions, EXTENSION_ADXP_POSTBOX)["valueString"] == "Postfach 4711"
        assert find_extension(extensions, EXTENSION_ADXP_STREETNAME) is None
        assert find_extension(extensions, EXTENSION_ADXP_HOUSENUMBER) is None

    def test_street_without_unit(self, guide: DeKdsGuide, make_patient):
        """Test the street scenario without a secondary unit."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        address = result["address"][0]
        assert address["line"] == ["ExampleAllee 42"]
        assert "type" not in address

        extensions = _line_extensions(result)
        assert find_extension(extensions, EXTENSION_ADXP_HOUSENUMBER)["valueString"] == "42"
        assert find_extension(extensions, EXTENSION_ADXP_STREETNAME)["valueString"] == "ExampleAllee"
        assert find_extension(extensions, EXTENSION_ADXP_ADDITIONAL_LOCATOR) is None

    def test_street_with_unit(self, guide: DeKdsGuide, make_patient):
        """Test that a secondary unit becomes an additional locator."""
        patient, context = make_patient(address="7 Linden-Weg Apt 3")
        result = _extend(guide, patient, context)

        assert result["address"][0]["line"] == ["LindenWeg 7, Apt 3"]
        extensions = _line_extensions(result)
        assert find_extension(extensions, EXTENSION_ADXP_ADDITIONAL_LOCATOR)["valueString"] == "Apt 3"

    def test_malformed_address_raises(self, guide: DeKdsGuide, make_patient):
        """Test that an unparseable street line aborts the person."""
        patient, context = make_patient(address="123 Main St")

        with pytest.raises(AddressFormatError) as exc_info:
            guide.extend(ResourceKind.PATIENT, patient, None, context)

        assert exc_info.value.line == "123 Main St"

    def test_no_address(self, guide: DeKdsGuide, make_patient):
        """Test that a person without address is skipped silently."""
        patient, context = make_patient(address=None)
        result = _extend(guide, patient, context)
        assert "address" not in result

    def test_municipality_code(self, guide: DeKdsGuide, make_patient):
        """Test that a known postal code adds the municipality code to the city."""
        patient, context = make_patient(floats=DECLINE_BEFORE_ADDRESS + [0.9, 0.05])
        result = _extend(guide, patient, context)

        ags = find_extension(primitive_extensions(result["address"][0], "city"), EXTENSION_DESTATIS_AGS)
        assert ags["valueCoding"]["code"] == "01003000"

    def test_unknown_postal_code(self, guide: DeKdsGuide, make_patient):
        """Test the unknown postal code scenario."""
        patient, context = make_patient(floats=DECLINE_BEFORE_ADDRESS + [0.9, 0.05], postal_code="99999")
        result = _extend(guide, patient, context)

        assert "_city" not in result["address"][0]
        assert result["address"][0]["city"] == "Lübeck"


class TestPatientDemographics:
    """Tests for gender, birth date, deceased and name."""

    def test_gender_diverse(self, guide: DeKdsGuide, make_patient):
        """Test mapping to the third gender."""
        patient, context = make_patient(floats=[0.9, 0.9, 0.05, 0.2])
        result = _extend(guide, patient, context)

        assert result["gender"] == "other"
        ext = find_extension(primitive_extensions(result, "gender"), EXTENSION_GENDER_AMTLICH_DE)
        assert ext["valueCoding"]["code"] == "D"
        assert ext["valueCoding"]["display"] == "divers"

    def test_gender_undetermined(self, guide: DeKdsGuide, make_patient):
        """Test the 'unbestimmt' variant."""
        patient, context = make_patient(floats=[0.9, 0.9, 0.05, 0.7])
        result = _extend(guide, patient, context)

        ext = find_extension(primitive_extensions(result, "gender"), EXTENSION_GENDER_AMTLICH_DE)
        assert ext["valueCoding"]["code"] == "X"

    def test_gender_unchanged(self, guide: DeKdsGuide, make_patient):
        """Test that most persons keep their gender."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        assert result["gender"] == "female"
        assert "_gender" not in result

    def test_birth_date_absent(self, guide: DeKdsGuide, make_patient):
        """Test replacing the birth date by a data absent reason."""
        patient, context = make_patient(floats=[0.9, 0.9, 0.9, 0.05, 0.0], ints=[1])
        result = _extend(guide, patient, context)

        assert "birthDate" not in result
        ext = find_extension(primitive_extensions(result, "birthDate"), EXTENSION_DATA_ABSENT_REASON)
        assert ext["valueCode"] == "asked-unknown"

    def test_deceased_boolean_false(self, guide: DeKdsGuide, make_patient):
        """Test that living persons may get deceasedBoolean false."""
        patient, context = make_patient(floats=[0.9, 0.9, 0.9, 0.9, 0.1])
        result = _extend(guide, patient, context)

        assert result["deceasedBoolean"] is False

    def test_deceased_boolean_true(self, guide: DeKdsGuide, make_patient):
        """Test that a death timestamp is replaced by deceasedBoolean true."""
        patient, context = make_patient(floats=[0.9, 0.9, 0.9, 0.9, 0.1], deceased="2020-12-24T08:00:00")
        assert "deceasedDateTime" in patient

        result = _extend(guide, patient, context)

        assert result["deceasedBoolean"] is True
        assert "deceasedDateTime" not in result

    def test_deceased_kept_as_timestamp(self, guide: DeKdsGuide, make_patient):
        """Test that the timestamp survives when the draw declines."""
        patient, context = make_patient(deceased="2020-12-24T08:00:00")
        result = _extend(guide, patient, context)

        assert "deceasedBoolean" not in result
        assert result["deceasedDateTime"] == "2020-12-24T08:00:00"

    def test_nobility(self, guide: DeKdsGuide, make_patient):
        """Test the nobility scenario through the patient hook."""
        patient, context = make_patient(floats=[0.9, 0.1, 0.1, 0.1], ints=[0, 4])
        result = _extend(guide, patient, context)

        name = result["name"][0]
        assert name["family"] == "Gräfin von Muster"
        own_name = find_extension(primitive_extensions(name, "family"), EXTENSION_OWN_NAME)
        assert own_name["valueString"] == "Muster"

    def test_salutation_removed(self, guide: DeKdsGuide, make_patient):
        """Test that the salutation leaves the prefixes."""
        patient, context = make_patient()
        result = _extend(guide, patient, context)

        assert "Mrs." not in result["name"][0].get("prefix", [])
        assert result["name"][0]["suffix"] == ["PhD"]


class TestReproducibility:
    """Tests for seeded reproducibility."""

    def test_same_seed_same_patient(self, guide: DeKdsGuide, person_dict: dict):
        """Test that two runs with the same seed produce identical patients."""
        results = []
        for _ in range(2):
            person = PersonProfile.from_dict(person_dict)
            context = BundleContext(person=person, stop_time=datetime(2021, 1, 1))
            results.append(_extend(guide, BaseResourceBuilder().patient(person, context), context))

        assert results[0] == results[1]
