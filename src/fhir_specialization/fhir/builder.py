"""
Base Resource Builder

Build generic, guide-neutral FHIR R4 resources from a person and the clinical
facts of their record. Specializations decorate these drafts afterwards.
"""

from datetime import datetime
from typing import Any
import base64

from fhir_specialization.bundle import BundleContext
from fhir_specialization.fhir.elements import codeable_concept, coding, reference
from fhir_specialization.records import ClinicalFact, Clinician, Code, PersonProfile, Provider

SYNTHEA_SYSTEM = "https://github.com/synthetichealth/synthea"
SYSTEM_V2_0203 = "http://terminology.hl7.org/CodeSystem/v2-0203"
MRN_SYSTEM = "http://hospital.smarthealthit.org"
SSN_SYSTEM = "http://hl7.org/fhir/sid/us-ssn"
DRIVERS_LICENSE_SYSTEM = "urn:oid:2.16.840.1.113883.4.3.25"
PASSPORT_SYSTEM = "http://standardhealthrecord.org/fhir/StructureDefinition/passportNumber"
NPI_SYSTEM = "http://hl7.org/fhir/sid/us-npi"
LOINC_URI = "http://loinc.org"
SNOMED_URI = "http://snomed.info/sct"

# Encounter type → v3-ActCode class
ENCOUNTER_CLASSES = {
    "wellness": ("AMB", "ambulatory"),
    "ambulatory": ("AMB", "ambulatory"),
    "outpatient": ("AMB", "ambulatory"),
    "urgentcare": ("AMB", "ambulatory"),
    "inpatient": ("IMP", "inpatient encounter"),
    "emergency": ("EMER", "emergency"),
    "home": ("HH", "home health"),
    "virtual": ("VR", "virtual"),
}


def _instant(value: datetime) -> str:
    return value.isoformat()


def _concept(code: Code | None, text: str | None = None) -> dict[str, Any]:
    if code is None:
        return {"text": text or "unknown"}
    return codeable_concept(code.system, code.code, code.display, text)


def _period(fact: ClinicalFact) -> dict[str, Any]:
    period = {"start": _instant(fact.start)}
    if fact.stop:
        period["end"] = _instant(fact.stop)
    return period


def _note_type() -> dict[str, Any]:
    note_type = codeable_concept(LOINC_URI, "34117-2", "History and physical note")
    note_type["coding"].append(coding(LOINC_URI, "51847-2", "Evaluation+Plan note"))
    return note_type


class BaseResourceBuilder:
    """Create generic FHIR R4 drafts. Ids are drawn from the bundle context."""

    def _new(self, resource_type: str, context: BundleContext) -> dict[str, Any]:
        return {"resourceType": resource_type, "id": context.new_id(resource_type)}

    def _subject(self, resource: dict[str, Any], context: BundleContext, field: str = "subject") -> None:
        if context.patient_url:
            resource[field] = reference(context.patient_url)

    def _encounter(self, resource: dict[str, Any], fact: ClinicalFact, context: BundleContext, field: str = "encounter") -> None:
        if fact.encounter_id:
            url = context.full_url("Encounter", fact.encounter_id)
            if url:
                resource[field] = reference(url)

    # ------------------------------------------------------------------
    # Administrative
    # ------------------------------------------------------------------

    def patient(self, person: PersonProfile, context: BundleContext) -> dict[str, Any]:
        """Create Patient resource."""
        resource = self._new("Patient", context)

        identifiers = [
            {"system": SYNTHEA_SYSTEM, "value": person.id},
            self._typed_identifier("MR", "Medical Record Number", MRN_SYSTEM, person.mrn or person.id),
        ]
        if person.ssn:
            identifiers.append(
                self._typed_identifier("SS", "Social Security Number", SSN_SYSTEM, person.ssn)
            )
        if person.drivers_license:
            identifiers.append(
                self._typed_identifier(
                    "DL", "Driver's License", DRIVERS_LICENSE_SYSTEM, person.drivers_license
                )
            )
        if person.passport:
            identifiers.append(
                self._typed_identifier("PPN", "Passport Number", PASSPORT_SYSTEM, person.passport)
            )
        resource["identifier"] = identifiers

        name: dict[str, Any] = {
            "use": "official",
            "family": person.family,
            "given": [person.given],
        }
        if person.prefix:
            name["prefix"] = [person.prefix]
        if person.suffix:
            name["suffix"] = [person.suffix]
        resource["name"] = [name]

        if person.phone:
            resource["telecom"] = [{"system": "phone", "value": person.phone, "use": "home"}]

        resource["gender"] = "female" if person.is_female else "male"
        resource["birthDate"] = person.birth_date.isoformat()

        if person.deceased:
            resource["deceasedDateTime"] = _instant(person.deceased)

        if person.address:
            address: dict[str, Any] = {"line": [person.address]}
            if person.city:
                address["city"] = person.city
            if person.state:
                address["state"] = person.state
            if person.postal_code:
                address["postalCode"] = person.postal_code
            if person.country:
                address["country"] = person.country
            resource["address"] = [address]

        return resource

    def _typed_identifier(self, type_code: str, display: str, system: str, value: str) -> dict[str, Any]:
        return {
            "type": codeable_concept(SYSTEM_V2_0203, type_code, display),
            "system": system,
            "value": value,
        }

    def organization(self, provider: Provider, context: BundleContext) -> dict[str, Any]:
        """Create Organization resource."""
        resource = self._new("Organization", context)
        resource["identifier"] = [{"system": SYNTHEA_SYSTEM, "value": provider.id}]
        resource["active"] = True
        resource["type"] = [
            codeable_concept(
                "http://terminology.hl7.org/CodeSystem/organization-type",
                "prov",
                "Healthcare Provider",
            )
        ]
        resource["name"] = provider.name
        if provider.phone:
            resource["telecom"] = [{"system": "phone", "value": provider.phone}]
        address = self._provider_address(provider)
        if address:
            resource["address"] = [address]
        return resource

    def location(self, provider: Provider, context: BundleContext) -> dict[str, Any]:
        """Create Location resource for a provider."""
        resource = self._new("Location", context)
        resource["status"] = "active"
        resource["name"] = provider.name
        if provider.phone:
            resource["telecom"] = [{"system": "phone", "value": provider.phone}]
        address = self._provider_address(provider)
        if address:
            resource["address"] = address
        if provider.latitude is not None and provider.longitude is not None:
            resource["position"] = {
                "latitude": provider.latitude,
                "longitude": provider.longitude,
            }
        org_url = context.organization_url(provider)
        if org_url:
            resource["managingOrganization"] = reference(org_url, provider.name)
        return resource

    def _provider_address(self, provider: Provider) -> dict[str, Any] | None:
        if not provider.address:
            return None
        address: dict[str, Any] = {"line": [provider.address]}
        if provider.city:
            address["city"] = provider.city
        if provider.state:
            address["state"] = provider.state
        if provider.postal_code:
            address["postalCode"] = provider.postal_code
        return address

    def practitioner(self, clinician: Clinician, context: BundleContext) -> dict[str, Any]:
        """Create Practitioner resource."""
        resource = self._new("Practitioner", context)
        resource["identifier"] = [{"system": NPI_SYSTEM, "value": clinician.id}]
        resource["active"] = True
        name: dict[str, Any] = {"family": clinician.family, "given": [clinician.given]}
        if clinician.prefix:
            name["prefix"] = [clinician.prefix]
        resource["name"] = [name]
        resource["telecom"] = [
            {
                "system": "email",
                "value": f"{clinician.given}.{clinician.family}@example.com".lower(),
                "use": "work",
            }
        ]
        return resource

    def practitioner_role(self, clinician: Clinician, context: BundleContext) -> dict[str, Any]:
        """Create PractitionerRole linking a practitioner to its organization."""
        resource = self._new("PractitionerRole", context)
        practitioner_url = context.practitioner_url(clinician)
        if practitioner_url:
            resource["practitioner"] = reference(practitioner_url, clinician.full_name)
        org_url = context.organization_url(clinician.organization)
        if org_url:
            resource["organization"] = reference(org_url, clinician.organization.name)
        return resource

    # ------------------------------------------------------------------
    # Encounter and clinical facts
    # ------------------------------------------------------------------

    def encounter(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create Encounter resource."""
        resource = self._new("Encounter", context)
        resource["status"] = "finished"

        class_code, class_display = ENCOUNTER_CLASSES.get(
            (fact.category or "ambulatory").lower(), ("AMB", "ambulatory")
        )
        resource["class"] = coding(
            "http://terminology.hl7.org/CodeSystem/v3-ActCode", class_code, class_display
        )

        if fact.code:
            resource["type"] = [_concept(fact.code)]
        self._subject(resource, context)
        resource["period"] = _period(fact)

        if fact.clinician:
            practitioner_url = context.practitioner_url(fact.clinician)
            if practitioner_url:
                resource["participant"] = [
                    {"individual": reference(practitioner_url, fact.clinician.full_name)}
                ]

        if fact.provider:
            org_url = context.organization_url(fact.provider)
            if org_url:
                resource["serviceProvider"] = reference(org_url, fact.provider.name)

        return resource

    def condition(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create Condition resource."""
        resource = self._new("Condition", context)
        resource["clinicalStatus"] = codeable_concept(
            "http://terminology.hl7.org/CodeSystem/condition-clinical",
            "resolved" if fact.stop else "active",
        )
        resource["verificationStatus"] = codeable_concept(
            "http://terminology.hl7.org/CodeSystem/condition-ver-status", "confirmed"
        )
        resource["code"] = _concept(fact.code)
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["onsetDateTime"] = _instant(fact.start)
        resource["recordedDate"] = _instant(fact.start)
        if fact.stop:
            resource["abatementDateTime"] = _instant(fact.stop)
        return resource

    def allergy(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create AllergyIntolerance resource."""
        resource = self._new("AllergyIntolerance", context)
        resource["clinicalStatus"] = codeable_concept(
            "http://terminology.hl7.org/CodeSystem/allergyintolerance-clinical",
            "inactive" if fact.stop else "active",
        )
        resource["verificationStatus"] = codeable_concept(
            "http://terminology.hl7.org/CodeSystem/allergyintolerance-verification",
            "confirmed",
        )
        resource["type"] = fact.attributes.get("type", "allergy")
        if fact.category:
            resource["category"] = [fact.category]
        resource["criticality"] = fact.attributes.get("criticality", "low")
        resource["code"] = _concept(fact.code)
        self._subject(resource, context, "patient")
        resource["recordedDate"] = _instant(fact.start)
        return resource

    def observation(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create Observation resource."""
        resource = self._new("Observation", context)
        resource["status"] = "final"
        if fact.category:
            resource["category"] = [
                codeable_concept(
                    "http://terminology.hl7.org/CodeSystem/observation-category",
                    fact.category,
                )
            ]
        resource["code"] = _concept(fact.code)
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["effectiveDateTime"] = _instant(fact.start)
        resource["issued"] = _instant(fact.start)

        if isinstance(fact.value, bool) or fact.value is None:
            pass
        elif isinstance(fact.value, (int, float)):
            quantity: dict[str, Any] = {"value": fact.value}
            if fact.unit:
                quantity.update(
                    {"unit": fact.unit, "system": "http://unitsofmeasure.org", "code": fact.unit}
                )
            resource["valueQuantity"] = quantity
        elif isinstance(fact.value, Code):
            resource["valueCodeableConcept"] = _concept(fact.value)
        else:
            resource["valueString"] = str(fact.value)

        return resource

    def procedure(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create Procedure resource."""
        resource = self._new("Procedure", context)
        resource["status"] = "completed"
        resource["code"] = _concept(fact.code)
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["performedPeriod"] = _period(fact)
        reason = fact.attributes.get("reason")
        if reason:
            resource["reasonCode"] = [_concept(Code.from_dict(reason))]
        return resource

    def device(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create Device resource."""
        resource = self._new("Device", context)
        udi = fact.attributes.get("udi")
        if udi:
            resource["udiCarrier"] = [{"deviceIdentifier": udi, "carrierHRF": udi}]
        resource["status"] = "inactive" if fact.stop else "active"
        if fact.code:
            resource["deviceName"] = [{"name": fact.code.display or fact.code.code, "type": "user-friendly-name"}]
        resource["type"] = _concept(fact.code)
        self._subject(resource, context, "patient")
        return resource

    def supply_delivery(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create SupplyDelivery resource."""
        resource = self._new("SupplyDelivery", context)
        resource["status"] = "completed"
        self._subject(resource, context, "patient")
        resource["type"] = codeable_concept(
            "http://terminology.hl7.org/CodeSystem/supply-item-type", "device", "Device"
        )
        resource["suppliedItem"] = {
            "quantity": {"value": fact.value if isinstance(fact.value, (int, float)) else 1},
            "itemCodeableConcept": _concept(fact.code),
        }
        resource["occurrenceDateTime"] = _instant(fact.start)
        return resource

    def medication_request(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create MedicationRequest resource."""
        resource = self._new("MedicationRequest", context)
        resource["status"] = "stopped" if fact.stop else "active"
        resource["intent"] = "order"
        resource["medicationCodeableConcept"] = _concept(fact.code)
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["authoredOn"] = _instant(fact.start)
        if fact.clinician:
            practitioner_url = context.practitioner_url(fact.clinician)
            if practitioner_url:
                resource["requester"] = reference(practitioner_url, fact.clinician.full_name)
        dosage = fact.attributes.get("dosage")
        if dosage:
            resource["dosageInstruction"] = [{"text": dosage}]
        return resource

    def medication_administration(
        self, fact: ClinicalFact, request_url: str | None, context: BundleContext
    ) -> dict[str, Any]:
        """Create MedicationAdministration for an administered medication."""
        resource = self._new("MedicationAdministration", context)
        resource["status"] = "completed"
        resource["medicationCodeableConcept"] = _concept(fact.code)
        self._subject(resource, context)
        self._encounter(resource, fact, context, "context")
        resource["effectiveDateTime"] = _instant(fact.start)
        if request_url:
            resource["request"] = reference(request_url)
        return resource

    def immunization(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create Immunization resource."""
        resource = self._new("Immunization", context)
        resource["status"] = "completed"
        resource["vaccineCode"] = _concept(fact.code)
        self._subject(resource, context, "patient")
        self._encounter(resource, fact, context)
        resource["occurrenceDateTime"] = _instant(fact.start)
        resource["primarySource"] = True
        return resource

    def report(self, fact: ClinicalFact, results: list[str], context: BundleContext) -> dict[str, Any]:
        """Create DiagnosticReport resource referencing its observations."""
        resource = self._new("DiagnosticReport", context)
        resource["status"] = "final"
        resource["category"] = [
            codeable_concept("http://terminology.hl7.org/CodeSystem/v2-0074", "LAB", "Laboratory")
        ]
        resource["code"] = _concept(fact.code)
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["effectiveDateTime"] = _instant(fact.start)
        resource["issued"] = _instant(fact.start)
        if results:
            resource["result"] = [reference(url) for url in results]
        return resource

    def care_team(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create CareTeam resource for a care plan."""
        resource = self._new("CareTeam", context)
        resource["status"] = "inactive" if fact.stop else "active"
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["period"] = _period(fact)

        participants = []
        if context.patient_url:
            participants.append(
                {
                    "role": [codeable_concept(SNOMED_URI, "116154003", "Patient")],
                    "member": reference(context.patient_url),
                }
            )
        if fact.clinician and context.practitioner_url(fact.clinician):
            participants.append(
                {
                    "role": [codeable_concept(SNOMED_URI, "223366009", "Healthcare professional (occupation)")],
                    "member": reference(context.practitioner_url(fact.clinician), fact.clinician.full_name),
                }
            )
        if fact.provider and context.organization_url(fact.provider):
            org = reference(context.organization_url(fact.provider), fact.provider.name)
            participants.append(
                {
                    "role": [codeable_concept(SNOMED_URI, "224891009", "Healthcare services (qualifier value)")],
                    "member": org,
                }
            )
            resource["managingOrganization"] = [org]
        if participants:
            resource["participant"] = participants
        return resource

    def goal(self, description: str, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create Goal resource for a care plan goal."""
        resource = self._new("Goal", context)
        resource["lifecycleStatus"] = "completed" if fact.stop else "active"
        resource["description"] = {"text": description}
        self._subject(resource, context)
        return resource

    def care_plan(
        self,
        fact: ClinicalFact,
        care_team_url: str | None,
        goal_urls: list[str],
        context: BundleContext,
    ) -> dict[str, Any]:
        """Create CarePlan resource."""
        resource = self._new("CarePlan", context)
        resource["status"] = "completed" if fact.stop else "active"
        resource["intent"] = "order"
        resource["category"] = [_concept(fact.code)]
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["period"] = _period(fact)
        if care_team_url:
            resource["careTeam"] = [reference(care_team_url)]
        if goal_urls:
            resource["goal"] = [reference(url) for url in goal_urls]

        activities = [Code.from_dict(a) for a in fact.attributes.get("activities", [])]
        if activities:
            resource["activity"] = [
                {
                    "detail": {
                        "code": _concept(activity),
                        "status": "completed" if fact.stop else "in-progress",
                    }
                }
                for activity in activities
            ]
        return resource

    def imaging_study(self, fact: ClinicalFact, context: BundleContext) -> dict[str, Any]:
        """Create ImagingStudy resource with a single series."""
        resource = self._new("ImagingStudy", context)
        resource["status"] = "available"
        self._subject(resource, context)
        self._encounter(resource, fact, context)
        resource["started"] = _instant(fact.start)
        resource["procedureCode"] = [_concept(fact.code)]

        modality = fact.attributes.get("modality")
        body_site = fact.attributes.get("body_site")
        series: dict[str, Any] = {
            "uid": f"{fact.fact_id}.1",
            "number": 1,
            "numberOfInstances": int(fact.attributes.get("instances", 1)),
        }
        if modality:
            series["modality"] = coding(
                "http://dicom.nema.org/resources/ontology/DCM", modality["code"], modality.get("display")
            )
        if body_site:
            series["bodySite"] = coding(SNOMED_URI, body_site["code"], body_site.get("display"))
        resource["numberOfSeries"] = 1
        resource["numberOfInstances"] = series["numberOfInstances"]
        resource["series"] = [series]
        return resource

    # ------------------------------------------------------------------
    # Financial
    # ------------------------------------------------------------------

    def claim(self, encounter: ClinicalFact, items: list[ClinicalFact], context: BundleContext) -> dict[str, Any]:
        """Create Claim resource for an encounter."""
        resource = self._new("Claim", context)
        resource["status"] = "active"
        resource["type"] = codeable_concept(
            "http://terminology.hl7.org/CodeSystem/claim-type",
            "institutional" if encounter.category == "inpatient" else "professional",
        )
        resource["use"] = "claim"
        self._subject(resource, context, "patient")
        resource["billablePeriod"] = _period(encounter)
        resource["created"] = _instant(encounter.stop or encounter.start)
        if encounter.provider and context.organization_url(encounter.provider):
            resource["provider"] = reference(
                context.organization_url(encounter.provider), encounter.provider.name
            )
        resource["priority"] = codeable_concept(
            "http://terminology.hl7.org/CodeSystem/processpriority", "normal"
        )
        resource["insurance"] = [
            {
                "sequence": 1,
                "focal": True,
                "coverage": {"display": encounter.attributes.get("payer", "NO_INSURANCE")},
            }
        ]

        billable = [encounter] + [i for i in items if i.code is not None]
        resource["item"] = [
            {"sequence": n, "productOrService": _concept(item.code)}
            for n, item in enumerate(billable, start=1)
        ]
        resource["total"] = {"value": self._total_cost(billable), "currency": "USD"}
        return resource

    def explanation_of_benefit(
        self, encounter: ClinicalFact, claim_url: str, claim: dict[str, Any], context: BundleContext
    ) -> dict[str, Any]:
        """Create ExplanationOfBenefit resource for a claim."""
        resource = self._new("ExplanationOfBenefit", context)
        resource["status"] = "active"
        resource["type"] = claim["type"]
        resource["use"] = "claim"
        self._subject(resource, context, "patient")
        resource["billablePeriod"] = claim["billablePeriod"]
        resource["created"] = claim["created"]
        resource["insurer"] = {"display": encounter.attributes.get("payer", "NO_INSURANCE")}
        if "provider" in claim:
            resource["provider"] = claim["provider"]
        resource["claim"] = reference(claim_url)
        resource["outcome"] = "complete"
        resource["insurance"] = [{"focal": True, "coverage": claim["insurance"][0]["coverage"]}]
        resource["total"] = [
            {
                "category": codeable_concept(
                    "http://terminology.hl7.org/CodeSystem/adjudication", "submitted", "Submitted Amount"
                ),
                "amount": claim["total"],
            }
        ]
        return resource

    def _total_cost(self, facts: list[ClinicalFact]) -> float:
        return round(sum(float(f.attributes.get("cost", 0.0)) for f in facts), 2)

    # ------------------------------------------------------------------
    # Optional resources
    # ------------------------------------------------------------------

    def clinical_note(
        self, encounter: ClinicalFact, note_text: str, context: BundleContext
    ) -> dict[str, Any]:
        """Create a DiagnosticReport carrying a plain-text clinical note."""
        resource = self._new("DiagnosticReport", context)
        resource["status"] = "final"
        resource["category"] = [_note_type()]
        resource["code"] = _note_type()
        self._subject(resource, context)
        encounter_url = context.full_url("Encounter", encounter.fact_id)
        if encounter_url:
            resource["encounter"] = reference(encounter_url)
        resource["effectiveDateTime"] = _instant(encounter.start)
        resource["issued"] = _instant(encounter.start)

        encounter_resource = context.get(encounter_url) if encounter_url else None
        if encounter_resource:
            if encounter_resource.get("participant"):
                resource["performer"] = [dict(encounter_resource["participant"][0]["individual"])]
            elif encounter_resource.get("serviceProvider"):
                resource["performer"] = [dict(encounter_resource["serviceProvider"])]

        resource["presentedForm"] = [
            {
                "contentType": "text/plain",
                "data": base64.b64encode(note_text.encode("utf-8")).decode("ascii"),
            }
        ]
        return resource

    def note_text(self, encounter: ClinicalFact, facts: list[ClinicalFact]) -> str:
        """Render a short plain-text note for an encounter."""
        lines = [
            f"{encounter.start.date().isoformat()}",
            f"Encounter: {encounter.code.display if encounter.code else encounter.category or 'visit'}",
        ]
        for fact in facts:
            if fact.code is None:
                continue
            label = fact.kind.value.replace("_", " ")
            text = fact.code.display or fact.code.code
            if fact.value is not None and not isinstance(fact.value, Code):
                text = f"{text}: {fact.value}{' ' + fact.unit if fact.unit else ''}"
            lines.append(f"- {label}: {text}")
        return "\n".join(lines)

    def provenance(self, context: BundleContext) -> dict[str, Any]:
        """Create Provenance targeting every entry already in the bundle."""
        resource = self._new("Provenance", context)
        resource["target"] = [reference(e["fullUrl"]) for e in context.entries]
        resource["recorded"] = _instant(context.stop_time)
        return resource
