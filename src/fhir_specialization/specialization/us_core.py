"""
US Core Guide

Permissive guide handling every resource kind. Adds US Core profiles,
OMB race and ethnicity, birth sex, location references copied from the
encounter, and the extra resources US Core expects (Location,
PractitionerRole, Medication, clinical notes and Provenance).
"""

from typing import Any
import copy
import logging

from fhir_specialization.bundle import BundleContext
from fhir_specialization.fhir.elements import (
    codeable_concept,
    coding,
    conformance_meta,
    extension,
    has_coding,
    reference,
)
from fhir_specialization.lookups import LOINC_URI, LookupTables
from fhir_specialization.records import ClinicalFact, PersonProfile
from fhir_specialization.specialization.base import (
    Draft,
    ResourceKind,
    Specialization,
    profile_hook,
)
from fhir_specialization.specialization.identifiers import filter_by_system, set_identifiers

logger = logging.getLogger(__name__)

US_CORE = "http://hl7.org/fhir/us/core/StructureDefinition"

SYNTHEA_SYSTEM = "https://github.com/synthetichealth/synthea"
MRN_SYSTEM = "http://hospital.smarthealthit.org"
SSN_SYSTEM = "http://hl7.org/fhir/sid/us-ssn"
DRIVERS_LICENSE_SYSTEM = "urn:oid:2.16.840.1.113883.4.3.25"
PASSPORT_SYSTEM = "http://standardhealthrecord.org/fhir/StructureDefinition/passportNumber"

# identifier systems kept by the Patient forbid hook
ALLOWED_IDENTIFIER_SYSTEMS = [
    SYNTHEA_SYSTEM,
    MRN_SYSTEM,
    SSN_SYSTEM,
    DRIVERS_LICENSE_SYSTEM,
    PASSPORT_SYSTEM,
]

OMB_SYSTEM = "urn:oid:2.16.840.1.113883.6.238"
NULL_FLAVOR_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-NullFlavor"
SNOMED_URI = "http://snomed.info/sct"
RXNORM_URI = "http://www.nlm.nih.gov/research/umls/rxnorm"
NUCC_SYSTEM = "http://nucc.org/provider-taxonomy"

VITAL_SIGNS_PROFILE = "http://hl7.org/fhir/StructureDefinition/vitalsigns"
DEFAULT_PHONE = "(555) 555-5555"

RACE_DISPLAY = {
    "white": "White",
    "black": "Black or African American",
    "asian": "Asian",
    "native": "American Indian or Alaska Native",
}

ETHNICITY_DISPLAY = {
    "hispanic": "Hispanic or Latino",
    "nonhispanic": "Not Hispanic or Latino",
}

# short system names used by some record sources
CODE_SYSTEM_URIS = {
    "SNOMED-CT": SNOMED_URI,
    "RxNorm": RXNORM_URI,
}


def us_core_profile(name: str) -> str:
    return f"{US_CORE}/us-core-{name}"


def _encounter_location(fact: ClinicalFact | None, context: BundleContext) -> dict[str, Any] | None:
    """Location reference of the encounter a fact was recorded in."""
    if fact is None or not fact.encounter_id:
        return None
    encounter = context.resource("Encounter", fact.encounter_id)
    if not encounter or not encounter.get("location"):
        return None
    return dict(encounter["location"][0]["location"])


class UsCoreGuide(Specialization):
    """US Core implementation guide."""

    name = "us-core"
    description = "HL7 US Core; profiles on every kind plus Location, PractitionerRole, notes, Provenance"
    handled_kinds = frozenset(ResourceKind)

    def __init__(self, lookups: LookupTables | None = None):
        super().__init__(lookups)
        self.extensions = {
            ResourceKind.PATIENT: self.patient_extension,
            ResourceKind.ORGANIZATION: self.organization_extension,
            ResourceKind.LOCATION: self.location_extension,
            ResourceKind.PRACTITIONER: self.practitioner_extension,
            ResourceKind.PRACTITIONER_ROLE: self.practitioner_role_extension,
            ResourceKind.ENCOUNTER: self.encounter_extension,
            ResourceKind.CLINICAL_NOTE: self.clinical_note_extension,
            ResourceKind.CONDITION: self.condition_extension,
            ResourceKind.ALLERGY: self.allergy_extension,
            ResourceKind.OBSERVATION: self.observation_extension,
            ResourceKind.PROCEDURE: self.procedure_extension,
            ResourceKind.DEVICE: self.device_extension,
            ResourceKind.MEDICATION_REQUEST: self.medication_request_extension,
            ResourceKind.IMMUNIZATION: self.immunization_extension,
            ResourceKind.REPORT: self.report_extension,
            ResourceKind.CARE_TEAM: profile_hook(us_core_profile("careteam")),
            ResourceKind.CARE_PLAN: self.care_plan_extension,
            ResourceKind.GOAL: profile_hook(us_core_profile("goal")),
            ResourceKind.IMAGING_STUDY: self.imaging_study_extension,
            ResourceKind.ENCOUNTER_CLAIM: self.facility_extension,
            ResourceKind.EXPLANATION_OF_BENEFIT: self.facility_extension,
            ResourceKind.PROVENANCE: self.provenance_extension,
        }
        self.forbidden = {
            ResourceKind.PATIENT: self.patient_forbidden,
        }

    # ------------------------------------------------------------------
    # Patient
    # ------------------------------------------------------------------

    def patient_extension(self, patient: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        person = context.person
        patient["meta"] = conformance_meta(us_core_profile("patient"))

        extensions = patient.setdefault("extension", [])
        race = self.race_extension(person)
        if race:
            extensions.append(race)
        ethnicity = self.ethnicity_extension(person)
        if ethnicity:
            extensions.append(ethnicity)
        extensions.append(
            extension(
                f"{US_CORE}/us-core-birthsex", "Code", "F" if person.is_female else "M"
            )
        )
        patient["gender"] = "female" if person.is_female else "male"

        # US Core requires the two letter state code
        state = self.lookups.state_abbreviation(person.state)
        if state and patient.get("address"):
            patient["address"][0]["state"] = state

        return patient

    def patient_forbidden(self, patient: Draft) -> Draft:
        kept = filter_by_system(patient.get("identifier", []), ALLOWED_IDENTIFIER_SYSTEMS)
        return set_identifiers(patient, kept)

    def race_extension(self, person: PersonProfile) -> dict[str, Any] | None:
        """OMB race category. Mixed race is not modelled."""
        display = RACE_DISPLAY.get(person.race, "Other")
        if display == "Other":
            category = coding(NULL_FLAVOR_SYSTEM, "UNK", "Unknown")
        else:
            code = self.lookups.race_ethnicity_code(person.race)
            if code is None:
                logger.debug("%s no code for race %r", person.log_prefix, person.race)
                return None
            category = coding(OMB_SYSTEM, code, display)

        return {
            "url": f"{US_CORE}/us-core-race",
            "extension": [
                extension("ombCategory", "Coding", category),
                extension("text", "String", display),
            ],
        }

    def ethnicity_extension(self, person: PersonProfile) -> dict[str, Any] | None:
        """OMB ethnicity category. Anything but hispanic counts as non-hispanic."""
        ethnicity = "hispanic" if person.ethnicity == "hispanic" else "nonhispanic"
        display = ETHNICITY_DISPLAY[ethnicity]
        code = self.lookups.race_ethnicity_code(ethnicity)
        if code is None:
            logger.debug("%s no code for ethnicity %r", person.log_prefix, ethnicity)
            return None

        return {
            "url": f"{US_CORE}/us-core-ethnicity",
            "extension": [
                extension("ombCategory", "Coding", coding(OMB_SYSTEM, code, display)),
                extension("text", "String", display),
            ],
        }

    # ------------------------------------------------------------------
    # Organizations and practitioners
    # ------------------------------------------------------------------

    def organization_extension(self, organization: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        organization["meta"] = conformance_meta(us_core_profile("organization"))
        organization.setdefault("telecom", []).append({"system": "phone", "value": DEFAULT_PHONE})
        return organization

    def location_extension(self, location: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        location["meta"] = conformance_meta(us_core_profile("location"))
        if not location.get("telecom"):
            location["telecom"] = [{"system": "phone", "value": DEFAULT_PHONE}]
        return location

    def practitioner_extension(self, practitioner: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        practitioner["meta"] = conformance_meta(us_core_profile("practitioner"))
        telecom = practitioner.setdefault("telecom", [{"system": "email"}])
        telecom[0].setdefault("extension", []).append(
            extension(f"{US_CORE}/us-core-direct", "Boolean", True)
        )
        return practitioner

    def practitioner_role_extension(self, role: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        role["meta"] = conformance_meta(us_core_profile("practitionerrole"))
        general_practice = codeable_concept(NUCC_SYSTEM, "208D00000X", "General Practice")
        role["code"] = [general_practice]
        role["specialty"] = [copy.deepcopy(general_practice)]

        practitioner = context.get(role["practitioner"]["reference"]) if "practitioner" in role else None
        clinician = fact.clinician if fact else None
        if clinician:
            location_url = context.location_url(clinician.organization)
            if location_url:
                role["location"] = [reference(location_url, clinician.organization.name)]

        telecom = []
        if clinician and clinician.organization.phone:
            telecom.append({"system": "phone", "value": clinician.organization.phone})
        if practitioner and practitioner.get("telecom"):
            telecom.append(copy.deepcopy(practitioner["telecom"][0]))
        if telecom:
            role["telecom"] = telecom
        return role

    # ------------------------------------------------------------------
    # Encounter
    # ------------------------------------------------------------------

    def encounter_extension(self, encounter: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        encounter["meta"] = conformance_meta(us_core_profile("encounter"))

        # without an encounter provider the patient goes to their default provider
        provider = (fact.provider if fact else None) or context.person.provider
        if provider:
            location_url = context.location_url(provider)
            if location_url:
                encounter["location"] = [{"location": reference(location_url, provider.name)}]

        # Encounter.identifier is a required search parameter
        encounter.setdefault("identifier", []).append(
            {"use": "official", "system": SYNTHEA_SYSTEM, "value": encounter["id"]}
        )
        return encounter

    def clinical_note_extension(self, note: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        """Profile the note report and add its companion DocumentReference."""
        note["meta"] = conformance_meta(us_core_profile("diagnosticreport-note"))

        current = fact is not None and fact.fact_id == context.final_encounter_id
        encounter = context.resource("Encounter", fact.fact_id) if fact else None

        document: dict[str, Any] = {
            "resourceType": "DocumentReference",
            "meta": conformance_meta(us_core_profile("documentreference")),
            "identifier": [{"system": "urn:ietf:rfc:3986", "value": note["id"]}],
            "status": "current" if current else "superseded",
            "type": copy.deepcopy(note["category"][0]),
            "category": [
                codeable_concept(
                    "http://hl7.org/fhir/us/core/CodeSystem/us-core-documentreference-category",
                    "clinical-note",
                    "Clinical Note",
                )
            ],
            "subject": dict(note["subject"]),
            "date": note["effectiveDateTime"],
            "content": [
                {
                    "attachment": dict(note["presentedForm"][0]),
                    "format": coding(
                        "http://ihe.net/fhir/ValueSet/IHE.FormatCode.codesystem",
                        "urn:ihe:iti:xds:2017:mimeTypeSufficient",
                        "mimeType Sufficient",
                    ),
                }
            ],
        }
        if note.get("performer"):
            document["author"] = [dict(note["performer"][0])]
        if encounter and encounter.get("serviceProvider"):
            document["custodian"] = dict(encounter["serviceProvider"])
        if note.get("encounter"):
            document["context"] = {"encounter": [dict(note["encounter"])]}
            if encounter:
                document["context"]["period"] = dict(encounter["period"])

        context.add(document)
        return note

    # ------------------------------------------------------------------
    # Clinical
    # ------------------------------------------------------------------

    def condition_extension(self, condition: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        condition["meta"] = conformance_meta(us_core_profile("condition"))
        system = "http://terminology.hl7.org/CodeSystem/condition-category"
        categories = condition.setdefault("category", [])
        if not any(has_coding(c, system, "encounter-diagnosis") for c in categories):
            categories.append(codeable_concept(system, "encounter-diagnosis", "Encounter Diagnosis"))
        return condition

    def allergy_extension(self, allergy: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        allergy = self.forbid(ResourceKind.ALLERGY, allergy)
        allergy["meta"] = conformance_meta(us_core_profile("allergyintolerance"))
        return allergy

    def observation_extension(self, observation: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        """Pick the profile by LOINC code, falling back to the lab profile for report results."""
        observation = self.forbid(ResourceKind.OBSERVATION, observation)
        if fact is None or fact.code is None:
            return observation

        profiles = []
        mapped = self.lookups.profile_for(LOINC_URI, fact.code.code)
        if mapped:
            profiles.append(mapped)
            if "/us/core/" not in mapped and fact.category == "vital-signs":
                profiles.append(VITAL_SIGNS_PROFILE)
        elif fact.report_id and fact.category == "laboratory":
            profiles.append(us_core_profile("observation-lab"))

        if profiles:
            observation["meta"] = {"profile": profiles}
        return observation

    def procedure_extension(self, procedure: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        procedure = self.forbid(ResourceKind.PROCEDURE, procedure)
        procedure["meta"] = conformance_meta(us_core_profile("procedure"))
        location = _encounter_location(fact, context)
        if location:
            procedure["location"] = location
        return procedure

    def device_extension(self, device: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        device = self.forbid(ResourceKind.DEVICE, device)
        device["meta"] = conformance_meta(us_core_profile("implantable-device"))
        return device

    def medication_request_extension(self, request: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        """Profile the request; administered drugs reference a Medication resource."""
        request["meta"] = conformance_meta(us_core_profile("medicationrequest"))
        if fact is None or not fact.attributes.get("administration") or fact.code is None:
            return request

        code = fact.code
        medication = {
            "resourceType": "Medication",
            "meta": conformance_meta(us_core_profile("medication")),
            "code": codeable_concept(
                CODE_SYSTEM_URIS.get(code.system, code.system), code.code, code.display
            ),
            "status": "active",
        }
        entry = context.add(medication)
        request.pop("medicationCodeableConcept", None)
        request["medicationReference"] = reference(entry["fullUrl"])
        return request

    def immunization_extension(self, immunization: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        immunization["meta"] = conformance_meta(us_core_profile("immunization"))
        location = _encounter_location(fact, context)
        if location:
            immunization["location"] = location
        return immunization

    def report_extension(self, report: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        report["meta"] = conformance_meta(us_core_profile("diagnosticreport-lab"))
        encounter = context.resource("Encounter", fact.encounter_id) if fact and fact.encounter_id else None
        if encounter and encounter.get("serviceProvider"):
            report.setdefault("performer", []).append(dict(encounter["serviceProvider"]))
        return report

    def care_plan_extension(self, care_plan: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        care_plan["meta"] = conformance_meta(us_core_profile("careplan"))
        care_plan.setdefault("category", []).append(
            codeable_concept("http://hl7.org/fhir/us/core/CodeSystem/careplan-category", "assess-plan")
        )
        return care_plan

    def imaging_study_extension(self, study: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        location = _encounter_location(fact, context)
        if location:
            study["location"] = location
        return study

    def facility_extension(self, claim: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        """Claims and EOBs name the encounter location as facility."""
        if fact is None:
            return claim
        encounter = context.resource("Encounter", fact.fact_id)
        if encounter and encounter.get("location"):
            claim["facility"] = dict(encounter["location"][0]["location"])
        return claim

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------

    def provenance_extension(self, provenance: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        """Author and transmitter are the last encounter's practitioner and organization."""
        provenance["meta"] = conformance_meta(us_core_profile("provenance"))

        encounter = (
            context.resource("Encounter", context.final_encounter_id)
            if context.final_encounter_id
            else None
        )
        who = encounter["participant"][0]["individual"] if encounter and encounter.get("participant") else None

        on_behalf_of = None
        person_provider = context.person.provider
        if person_provider and context.organization_url(person_provider):
            on_behalf_of = reference(context.organization_url(person_provider), person_provider.name)
        elif encounter and encounter.get("serviceProvider"):
            on_behalf_of = encounter["serviceProvider"]

        if who is None:
            logger.debug("%s no practitioner for provenance agents", context.person.log_prefix)
            return provenance

        agents = []
        for system, code, display in (
            ("http://terminology.hl7.org/CodeSystem/provenance-participant-type", "author", "Author"),
            (
                "http://hl7.org/fhir/us/core/CodeSystem/us-core-provenance-participant-type",
                "transmitter",
                "Transmitter",
            ),
        ):
            agent: dict[str, Any] = {"type": codeable_concept(system, code, display), "who": dict(who)}
            if on_behalf_of:
                agent["onBehalfOf"] = dict(on_behalf_of)
            agents.append(agent)
        provenance["agent"] = agents
        return provenance
