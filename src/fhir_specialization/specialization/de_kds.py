"""
German Core Dataset Guide (MII KDS)

Restrictive guide for the core dataset of the German Medical Informatics
Initiative. Only a few resource kinds are handled; all others are exported
as generic FHIR R4.

Patient pipeline:
    forbid → profile → identifiers → name → gender → birth date
           → deceased → address
"""

from typing import Any
import logging

from fhir_specialization.bundle import BundleContext
from fhir_specialization.fhir.elements import (
    add_primitive_extension,
    codeable_concept,
    coding,
    conformance_meta,
    extension,
    has_coding,
    reference,
)
from fhir_specialization.lookups import LookupTables
from fhir_specialization.records import ClinicalFact, PersonProfile
from fhir_specialization.specialization.address import format_street_first, parse_address_line
from fhir_specialization.specialization.attributes import draw_boolean, draw_choice
from fhir_specialization.specialization.base import (
    Draft,
    ResourceKind,
    Specialization,
    profile_hook,
)
from fhir_specialization.specialization.identifiers import (
    SYSTEM_V2_0203,
    add_identifier,
    filter_by_type_or_system,
    set_identifiers,
)
from fhir_specialization.specialization.names import enrich_official_name

logger = logging.getLogger(__name__)

SYNTHEA_SYSTEM = "https://github.com/synthetichealth/synthea"
SYNTHEA_DE = "https://github.com/itcr-uni-luebeck/synthea"

MII_CORE = "https://www.medizininformatik-initiative.de/fhir/core"
PROFILE_PATIENT = f"{MII_CORE}/StructureDefinition/Patient"
PROFILE_ENCOUNTER = f"{MII_CORE}/modul-fall/StructureDefinition/KontaktGesundheitseinrichtung"
PROFILE_CONDITION = f"{MII_CORE}/modul-diagnose/StructureDefinition/Diagnose"
PROFILE_PROCEDURE = f"{MII_CORE}/modul-prozedur/StructureDefinition/Procedure"

SYSTEM_IDENTIFIER_TYPE_DE_BASIS = "http://fhir.de/CodeSystem/identifier-type-de-basis"
NAMINGSYSTEM_GKV_KVID10 = "http://fhir.de/NamingSystem/gkv/kvid-10"
NAMINGSYSTEM_ARGE_IK_IKNR = "http://fhir.de/NamingSystem/arge-ik/iknr"
INSURER_IK_NUMBER = "123456789"

SYSTEM_GENDER_AMTLICH_DE = "http://fhir.de/CodeSystem/gender-amtlich-de"
EXTENSION_GENDER_AMTLICH_DE = "http://fhir.de/StructureDefinition/gender-amtlich-de"
EXTENSION_DATA_ABSENT_REASON = "http://hl7.org/fhir/StructureDefinition/data-absent-reason"

EXTENSION_ADXP_POSTBOX = "http://hl7.org/fhir/StructureDefinition/iso21090-ADXP-postBox"
EXTENSION_ADXP_ADDITIONAL_LOCATOR = "http://hl7.org/fhir/StructureDefinition/iso21090-ADXP-additionalLocator"
EXTENSION_ADXP_HOUSENUMBER = "http://hl7.org/fhir/StructureDefinition/iso21090-ADXP-houseNumber"
EXTENSION_ADXP_STREETNAME = "http://hl7.org/fhir/StructureDefinition/iso21090-ADXP-streetName"
EXTENSION_DESTATIS_AGS = "http://fhir.de/StructureDefinition/destatis/ags"
SYSTEM_DESTATIS_AGS = "http://fhir.de/NamingSystem/destatis/ags"

PO_BOX_PREFIX = "Postfach"
PO_BOX_MAX = 999_999

# identifier types kept by the Patient forbid hook
ALLOWED_IDENTIFIER_TYPES = [
    (SYSTEM_V2_0203, "MR"),
    (SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "GKV"),
    (SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "PKV"),
]

DATA_ABSENT_REASONS = ["asked-declined", "asked-unknown", "unknown"]


class Chances:
    PO_BOX = 0.2
    MUNICIPALITY_CODE = 0.1
    BIRTHDAY_MISSING = 0.1
    GENDER_CHANGE = 0.1
    GENDER_DIVERSE = 0.5
    DECEASED_BOOLEAN = 0.5


class DeKdsGuide(Specialization):
    """Core dataset of the German Medical Informatics Initiative."""

    name = "de-kds"
    description = "German MII core dataset (KDS); patient enrichment, identifier substitution"
    handled_kinds = frozenset({
        ResourceKind.PATIENT,
        ResourceKind.ENCOUNTER,
        ResourceKind.CONDITION,
        ResourceKind.OBSERVATION,
        ResourceKind.PROCEDURE,
        ResourceKind.MEDICATION_REQUEST,
    })

    def __init__(self, lookups: LookupTables | None = None):
        super().__init__(lookups)
        self.extensions = {
            ResourceKind.PATIENT: self.patient_extension,
            ResourceKind.ENCOUNTER: profile_hook(PROFILE_ENCOUNTER, SYNTHEA_DE),
            ResourceKind.CONDITION: profile_hook(PROFILE_CONDITION, SYNTHEA_DE),
            ResourceKind.PROCEDURE: profile_hook(PROFILE_PROCEDURE, SYNTHEA_DE),
        }
        self.forbidden = {
            ResourceKind.PATIENT: self.patient_forbidden,
        }

    # ------------------------------------------------------------------
    # Patient
    # ------------------------------------------------------------------

    def patient_extension(self, patient: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        person = context.person
        patient = self.patient_forbidden(patient)
        patient["meta"] = conformance_meta(PROFILE_PATIENT, SYNTHEA_DE)

        self.set_identifiers(patient, person)
        enrich_official_name(patient, person.random, person.is_female)
        self.set_gender(patient, person)
        self.set_birth_date_absent(patient, person)
        self.set_deceased_boolean(patient, person)
        self.set_address(patient, person)
        return patient

    def patient_forbidden(self, patient: Draft) -> Draft:
        """Keep only the medical record number, insurance numbers and the internal id.

        Driver's licence and passport numbers have no meaning in Germany.
        """
        kept = filter_by_type_or_system(
            patient.get("identifier", []), ALLOWED_IDENTIFIER_TYPES, SYNTHEA_SYSTEM
        )
        return set_identifiers(patient, kept)

    def set_identifiers(self, patient: Draft, person: PersonProfile) -> None:
        """Mark the MRN as usual and substitute German insurance numbers."""
        for identifier in patient.get("identifier", []):
            if has_coding(identifier.get("type"), SYSTEM_V2_0203, "MR"):
                identifier["use"] = "usual"
                identifier["assigner"] = reference(SYNTHEA_DE)

        # the 10 digit passport number stands in for the statutory insurance id
        if person.passport:
            add_identifier(patient, {
                "use": "official",
                "type": codeable_concept(
                    SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "GKV", "Gesetzliche Krankenversicherung"
                ),
                "system": NAMINGSYSTEM_GKV_KVID10,
                "value": person.passport,
                "assigner": {
                    "identifier": {
                        "use": "official",
                        "type": codeable_concept(SYSTEM_V2_0203, "XX", "Organisations-ID"),
                        "system": NAMINGSYSTEM_ARGE_IK_IKNR,
                        "value": INSURER_IK_NUMBER,
                    }
                },
            })

        if person.ssn:
            add_identifier(patient, {
                "use": "secondary",
                "type": codeable_concept(
                    SYSTEM_IDENTIFIER_TYPE_DE_BASIS, "PKV", "Private Krankenversicherung"
                ),
                "value": person.ssn,
                "assigner": {"display": "Privates Krankenversicherungsunternehmen"},
            })

    def set_gender(self, patient: Draft, person: PersonProfile) -> None:
        """Map some persons to the third administrative gender."""
        if not draw_boolean(person.random, Chances.GENDER_CHANGE):
            return

        if draw_boolean(person.random, Chances.GENDER_DIVERSE):
            gender = coding(SYSTEM_GENDER_AMTLICH_DE, "D", "divers")
        else:
            gender = coding(SYSTEM_GENDER_AMTLICH_DE, "X", "unbestimmt")

        patient["gender"] = "other"
        add_primitive_extension(
            patient, "gender", extension(EXTENSION_GENDER_AMTLICH_DE, "Coding", gender)
        )
        logger.debug("%s gender mapped to other[%s]", person.log_prefix, gender["code"])

    def set_birth_date_absent(self, patient: Draft, person: PersonProfile) -> None:
        """Replace the birth date by a data absent reason for some persons."""
        if not draw_boolean(person.random, Chances.BIRTHDAY_MISSING):
            return

        reason = draw_choice(person.random, DATA_ABSENT_REASONS)
        patient.pop("birthDate", None)
        patient.pop("_birthDate", None)
        add_primitive_extension(
            patient, "birthDate", extension(EXTENSION_DATA_ABSENT_REASON, "Code", reason)
        )
        logger.debug("%s removed birth date, reason: %s", person.log_prefix, reason)

    def set_deceased_boolean(self, patient: Draft, person: PersonProfile) -> None:
        """Express deceased as a boolean instead of a timestamp for some persons."""
        if not draw_boolean(person.random, Chances.DECEASED_BOOLEAN):
            return

        deceased = patient.pop("deceasedDateTime", None) is not None
        patient["deceasedBoolean"] = deceased
        logger.debug("%s deceasedBoolean set to %s", person.log_prefix, deceased)

    def set_address(self, patient: Draft, person: PersonProfile) -> None:
        """Rewrite the home address in German conventions.

        Raises AddressFormatError when a street line cannot be parsed.
        """
        addresses = patient.get("address") or []
        if not addresses or not addresses[0].get("line"):
            logger.debug("%s no address line, skipping address enrichment", person.log_prefix)
            return

        address = addresses[0]
        address["use"] = "home"

        if draw_boolean(person.random, Chances.PO_BOX):
            self._set_po_box(address, person)
        else:
            self._set_street_line(address, person)

        if draw_boolean(person.random, Chances.MUNICIPALITY_CODE):
            self._add_municipality_code(address, person)

    def _set_po_box(self, address: dict[str, Any], person: PersonProfile) -> None:
        po_box = f"{PO_BOX_PREFIX} {int(person.random.integers(1, PO_BOX_MAX + 1))}"
        address["type"] = "postal"
        address["line"][0] = po_box
        add_primitive_extension(
            address, "line", extension(EXTENSION_ADXP_POSTBOX, "String", po_box), index=0
        )
        logger.debug("%s changed address to PO box %r", person.log_prefix, po_box)

    def _set_street_line(self, address: dict[str, Any], person: PersonProfile) -> None:
        components = parse_address_line(address["line"][0])
        line = format_street_first(components)
        address["line"][0] = line

        add_primitive_extension(
            address,
            "line",
            extension(EXTENSION_ADXP_HOUSENUMBER, "String", components.house_number),
            index=0,
        )
        add_primitive_extension(
            address,
            "line",
            extension(EXTENSION_ADXP_STREETNAME, "String", components.street),
            index=0,
        )
        if components.additional_locator:
            add_primitive_extension(
                address,
                "line",
                extension(EXTENSION_ADXP_ADDITIONAL_LOCATOR, "String", components.additional_locator),
                index=0,
            )
        logger.debug("%s reformatted address to %r", person.log_prefix, line)

    def _add_municipality_code(self, address: dict[str, Any], person: PersonProfile) -> None:
        # unknown postal codes are left undecorated
        code = self.lookups.municipality_code(address.get("postalCode"))
        if code is None:
            return
        add_primitive_extension(
            address,
            "city",
            extension(EXTENSION_DESTATIS_AGS, "Coding", coding(SYSTEM_DESTATIS_AGS, code)),
        )
        logger.debug("%s added municipality code %s", person.log_prefix, code)
