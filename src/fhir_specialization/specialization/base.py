"""
Specialization Contract

An implementation guide declares which resource kinds it has rules for and
registers at most one ``extend`` and one ``forbid`` hook per kind. A kind
without a registered hook passes through unchanged.

Call order per resource, enforced by the export pipeline:

    handles(kind)?  → extend(kind, draft, fact, context) → forbid(kind, draft)

``forbid`` hooks must be idempotent; guides may compose them inside their
``extend`` hooks as well.
"""

from enum import Enum
from typing import Any, Callable
import logging

from fhir_specialization.bundle import BundleContext
from fhir_specialization.fhir.elements import conformance_meta
from fhir_specialization.lookups import LookupTables
from fhir_specialization.records import ClinicalFact, PersonProfile

logger = logging.getLogger(__name__)

Draft = dict[str, Any]
ExtensionHook = Callable[[Draft, ClinicalFact | None, BundleContext], Draft]
ForbiddenHook = Callable[[Draft], Draft]


class ResourceKind(str, Enum):
    """Kinds of resources a guide can have rules for."""

    PATIENT = "patient"
    ORGANIZATION = "organization"
    LOCATION = "location"
    PRACTITIONER = "practitioner"
    PRACTITIONER_ROLE = "practitioner_role"
    ENCOUNTER = "encounter"
    CLINICAL_NOTE = "clinical_note"
    CONDITION = "condition"
    ALLERGY = "allergy"
    OBSERVATION = "observation"
    PROCEDURE = "procedure"
    DEVICE = "device"
    SUPPLY_DELIVERY = "supply_delivery"
    MEDICATION_REQUEST = "medication_request"
    MEDICATION_ADMINISTRATION = "medication_administration"
    IMMUNIZATION = "immunization"
    REPORT = "report"
    CARE_TEAM = "care_team"
    CARE_PLAN = "care_plan"
    GOAL = "goal"
    IMAGING_STUDY = "imaging_study"
    ENCOUNTER_CLAIM = "encounter_claim"
    EXPLANATION_OF_BENEFIT = "explanation_of_benefit"
    PROVENANCE = "provenance"

    @property
    def resource_type(self) -> str:
        """FHIR resourceType produced for this kind."""
        return RESOURCE_TYPES[self]


RESOURCE_TYPES: dict[ResourceKind, str] = {
    ResourceKind.PATIENT: "Patient",
    ResourceKind.ORGANIZATION: "Organization",
    ResourceKind.LOCATION: "Location",
    ResourceKind.PRACTITIONER: "Practitioner",
    ResourceKind.PRACTITIONER_ROLE: "PractitionerRole",
    ResourceKind.ENCOUNTER: "Encounter",
    ResourceKind.CLINICAL_NOTE: "DiagnosticReport",
    ResourceKind.CONDITION: "Condition",
    ResourceKind.ALLERGY: "AllergyIntolerance",
    ResourceKind.OBSERVATION: "Observation",
    ResourceKind.PROCEDURE: "Procedure",
    ResourceKind.DEVICE: "Device",
    ResourceKind.SUPPLY_DELIVERY: "SupplyDelivery",
    ResourceKind.MEDICATION_REQUEST: "MedicationRequest",
    ResourceKind.MEDICATION_ADMINISTRATION: "MedicationAdministration",
    ResourceKind.IMMUNIZATION: "Immunization",
    ResourceKind.REPORT: "DiagnosticReport",
    ResourceKind.CARE_TEAM: "CareTeam",
    ResourceKind.CARE_PLAN: "CarePlan",
    ResourceKind.GOAL: "Goal",
    ResourceKind.IMAGING_STUDY: "ImagingStudy",
    ResourceKind.ENCOUNTER_CLAIM: "Claim",
    ResourceKind.EXPLANATION_OF_BENEFIT: "ExplanationOfBenefit",
    ResourceKind.PROVENANCE: "Provenance",
}

# kinds that only exist in a bundle when the active guide asks for them
OPTIONAL_KINDS = frozenset({
    ResourceKind.LOCATION,
    ResourceKind.PRACTITIONER_ROLE,
    ResourceKind.CLINICAL_NOTE,
    ResourceKind.PROVENANCE,
})


def profile_hook(profile: str, source: str | None = None) -> ExtensionHook:
    """Extension hook that only claims conformance to a profile."""

    def hook(draft: Draft, fact: ClinicalFact | None, context: BundleContext) -> Draft:
        draft["meta"] = conformance_meta(profile, source)
        return draft

    return hook


class Specialization:
    """Rule set of one implementation guide.

    Subclasses set ``name`` and ``handled_kinds`` and fill the ``extensions``
    and ``forbidden`` hook tables in ``__init__``.
    """

    name: str = "generic"
    description: str = "Generic FHIR R4, no guide-specific rules"
    handled_kinds: frozenset[ResourceKind] = frozenset()

    def __init__(self, lookups: LookupTables | None = None):
        self.lookups = lookups or LookupTables()
        self.extensions: dict[ResourceKind, ExtensionHook] = {}
        self.forbidden: dict[ResourceKind, ForbiddenHook] = {}

    def handles(self, kind: ResourceKind) -> bool:
        """Whether this guide has rules for the kind."""
        return kind in self.handled_kinds

    def extend(
        self,
        kind: ResourceKind,
        draft: Draft,
        fact: ClinicalFact | None,
        context: BundleContext,
    ) -> Draft:
        """Add guide-specific data to a generic draft."""
        hook = self.extensions.get(kind)
        if hook is None:
            return draft
        return hook(draft, fact, context)

    def forbid(self, kind: ResourceKind, draft: Draft) -> Draft:
        """Remove data the guide does not allow. Idempotent."""
        hook = self.forbidden.get(kind)
        if hook is None:
            return draft
        return hook(draft)

    def before_export(self, person: PersonProfile) -> None:
        logger.info("%s started exporting (%s)", person.log_prefix, self.name)

    def after_export(self, person: PersonProfile) -> None:
        logger.info("%s done exporting (%s)", person.log_prefix, self.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
