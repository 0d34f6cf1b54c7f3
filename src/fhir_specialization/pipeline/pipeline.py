"""
Export Pipeline

Per-person orchestration of base resource building and guide specialization.

For every resource the base builder produces, in a fixed kind order:

    handles(kind)? → extend → forbid → add to bundle

Kinds the guide does not handle are added unchanged. Optional kinds
(Location, PractitionerRole, clinical notes, Provenance) are only built when
the guide handles them.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable
import json
import logging

from fhir_specialization.bundle import BundleContext
from fhir_specialization.errors import SpecializationError
from fhir_specialization.fhir.builder import BaseResourceBuilder
from fhir_specialization.lookups import LookupTables, load_lookup_tables
from fhir_specialization.pipeline.config import PipelineConfig, load_config
from fhir_specialization.records import (
    ClinicalFact,
    Clinician,
    FactKind,
    PatientRecord,
    PersonProfile,
    Provider,
)
from fhir_specialization.specialization import (
    OPTIONAL_KINDS,
    ResourceKind,
    Specialization,
    get_specialization,
)

logger = logging.getLogger(__name__)

# order in which the facts of one encounter are exported
FACT_ORDER = [
    FactKind.CONDITION,
    FactKind.ALLERGY,
    FactKind.OBSERVATION,
    FactKind.PROCEDURE,
    FactKind.DEVICE,
    FactKind.SUPPLY,
    FactKind.MEDICATION,
    FactKind.IMMUNIZATION,
    FactKind.REPORT,
    FactKind.CARE_PLAN,
    FactKind.IMAGING_STUDY,
]


@dataclass
class ExportResult:
    """Outcome of one person's export within a batch."""

    person: PersonProfile
    context: BundleContext | None = None
    error: SpecializationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ExportPipeline:
    """Export patient records as guide-specialized FHIR bundles."""

    def __init__(self, config: PipelineConfig | None = None, lookups: LookupTables | None = None):
        """Initialize pipeline with configuration."""
        self.config = config or PipelineConfig()

        # Initialize components (lazy)
        self._lookups = lookups
        self._guide: Specialization | None = None
        self._builder: BaseResourceBuilder | None = None

    @classmethod
    def from_config(cls, config_path: str | Path) -> "ExportPipeline":
        """Create pipeline from config file."""
        config = load_config(config_path)
        return cls(config)

    @classmethod
    def for_guide(cls, guide: str, lookups: LookupTables | None = None) -> "ExportPipeline":
        """Create pipeline with default settings for the named guide."""
        config = PipelineConfig()
        config.export.guide = guide
        return cls(config, lookups)

    @property
    def lookups(self) -> LookupTables:
        """Get or load the lookup tables. Load failures are fatal."""
        if self._lookups is None:
            self._lookups = load_lookup_tables(
                municipality_codes=self.config.lookups.municipality_codes,
                race_ethnicity_codes=self.config.lookups.race_ethnicity_codes,
                profile_mapping=self.config.lookups.profile_mapping,
            )
        return self._lookups

    @property
    def guide(self) -> Specialization:
        """The single guide active for this run."""
        if self._guide is None:
            self._guide = get_specialization(self.config.export.guide, self.lookups)
            logger.info("Active guide: %s", self._guide.name)
        return self._guide

    @property
    def builder(self) -> BaseResourceBuilder:
        if self._builder is None:
            self._builder = BaseResourceBuilder()
        return self._builder

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, record: PatientRecord) -> BundleContext:
        """Export one person's record.

        Raises SpecializationError when the record violates a guide's
        preconditions; nothing is returned for that person then.
        """
        person = record.person
        guide = self.guide
        context = BundleContext(person=person, stop_time=record.stop_time)

        encounters = record.encounters
        if encounters:
            context.final_encounter_id = encounters[-1].fact_id

        guide.before_export(person)

        self._emit(
            ResourceKind.PATIENT,
            self.builder.patient(person, context),
            None,
            context,
            source_id=person.id,
        )

        exported = 0
        for encounter in encounters:
            exported += self._export_encounter(record, encounter, context)

        orphans = len(record.facts) - len(encounters) - exported
        if orphans:
            logger.warning("%s %d facts without a known encounter skipped", person.log_prefix, orphans)

        if self._builds(ResourceKind.PROVENANCE):
            self._emit(ResourceKind.PROVENANCE, self.builder.provenance(context), None, context)

        guide.after_export(person)
        return context

    def export_many(self, records: Iterable[PatientRecord]) -> list[ExportResult]:
        """Export several records. A failing person does not stop the others."""
        results = []
        for record in records:
            try:
                context = self.export(record)
            except SpecializationError as e:
                logger.error("%s export failed: %s", record.person.log_prefix, e)
                results.append(ExportResult(person=record.person, error=e))
            else:
                results.append(ExportResult(person=record.person, context=context))
        return results

    def _builds(self, kind: ResourceKind) -> bool:
        """Optional kinds only exist when the active guide asks for them."""
        return kind not in OPTIONAL_KINDS or self.guide.handles(kind)

    def _emit(
        self,
        kind: ResourceKind,
        draft: dict[str, Any],
        fact: ClinicalFact | None,
        context: BundleContext,
        source_id: str | None = None,
    ) -> dict[str, Any]:
        """Specialize a draft if the guide handles its kind, then add it."""
        if self.guide.handles(kind):
            draft = self.guide.extend(kind, draft, fact, context)
            draft = self.guide.forbid(kind, draft)
        return context.add(draft, source_id)

    def _export_provider(self, provider: Provider, fact: ClinicalFact, context: BundleContext) -> None:
        if context.contains("Organization", provider.id):
            return
        self._emit(
            ResourceKind.ORGANIZATION,
            self.builder.organization(provider, context),
            fact,
            context,
            source_id=provider.id,
        )
        if self._builds(ResourceKind.LOCATION):
            self._emit(
                ResourceKind.LOCATION,
                self.builder.location(provider, context),
                fact,
                context,
                source_id=provider.id,
            )

    def _export_clinician(self, clinician: Clinician, fact: ClinicalFact, context: BundleContext) -> None:
        if context.contains("Practitioner", clinician.id):
            return
        self._export_provider(clinician.organization, fact, context)
        self._emit(
            ResourceKind.PRACTITIONER,
            self.builder.practitioner(clinician, context),
            fact,
            context,
            source_id=clinician.id,
        )
        if self._builds(ResourceKind.PRACTITIONER_ROLE):
            self._emit(
                ResourceKind.PRACTITIONER_ROLE,
                self.builder.practitioner_role(clinician, context),
                fact,
                context,
                source_id=clinician.id,
            )

    def _export_encounter(
        self, record: PatientRecord, encounter: ClinicalFact, context: BundleContext
    ) -> int:
        """Export an encounter with everything recorded during it.

        Returns the number of non-encounter facts exported.
        """
        provider = encounter.provider or record.person.provider
        if provider:
            self._export_provider(provider, encounter, context)
        if encounter.clinician:
            self._export_clinician(encounter.clinician, encounter, context)

        self._emit(
            ResourceKind.ENCOUNTER,
            self.builder.encounter(encounter, context),
            encounter,
            context,
            source_id=encounter.fact_id,
        )

        facts = record.facts_for(encounter)

        if self._builds(ResourceKind.CLINICAL_NOTE):
            note_text = self.builder.note_text(encounter, facts)
            self._emit(
                ResourceKind.CLINICAL_NOTE,
                self.builder.clinical_note(encounter, note_text, context),
                encounter,
                context,
            )

        for kind in FACT_ORDER:
            for fact in facts:
                if fact.kind == kind:
                    self._export_fact(fact, facts, context)

        claim = self._emit(
            ResourceKind.ENCOUNTER_CLAIM,
            self.builder.claim(encounter, facts, context),
            encounter,
            context,
            source_id=encounter.fact_id,
        )
        self._emit(
            ResourceKind.EXPLANATION_OF_BENEFIT,
            self.builder.explanation_of_benefit(
                encounter, claim["fullUrl"], claim["resource"], context
            ),
            encounter,
            context,
            source_id=encounter.fact_id,
        )
        return len(facts)

    def _export_fact(
        self, fact: ClinicalFact, encounter_facts: list[ClinicalFact], context: BundleContext
    ) -> None:
        builder = self.builder

        if fact.kind == FactKind.CONDITION:
            self._emit(ResourceKind.CONDITION, builder.condition(fact, context), fact, context, fact.fact_id)
        elif fact.kind == FactKind.ALLERGY:
            self._emit(ResourceKind.ALLERGY, builder.allergy(fact, context), fact, context, fact.fact_id)
        elif fact.kind == FactKind.OBSERVATION:
            self._emit(ResourceKind.OBSERVATION, builder.observation(fact, context), fact, context, fact.fact_id)
        elif fact.kind == FactKind.PROCEDURE:
            self._emit(ResourceKind.PROCEDURE, builder.procedure(fact, context), fact, context, fact.fact_id)
        elif fact.kind == FactKind.DEVICE:
            self._emit(ResourceKind.DEVICE, builder.device(fact, context), fact, context, fact.fact_id)
        elif fact.kind == FactKind.SUPPLY:
            self._emit(
                ResourceKind.SUPPLY_DELIVERY, builder.supply_delivery(fact, context), fact, context, fact.fact_id
            )
        elif fact.kind == FactKind.MEDICATION:
            request = self._emit(
                ResourceKind.MEDICATION_REQUEST,
                builder.medication_request(fact, context),
                fact,
                context,
                fact.fact_id,
            )
            if fact.attributes.get("administration"):
                self._emit(
                    ResourceKind.MEDICATION_ADMINISTRATION,
                    builder.medication_administration(fact, request["fullUrl"], context),
                    fact,
                    context,
                    fact.fact_id,
                )
        elif fact.kind == FactKind.IMMUNIZATION:
            self._emit(ResourceKind.IMMUNIZATION, builder.immunization(fact, context), fact, context, fact.fact_id)
        elif fact.kind == FactKind.REPORT:
            results = [
                context.full_url("Observation", f.fact_id)
                for f in encounter_facts
                if f.kind == FactKind.OBSERVATION and f.report_id == fact.fact_id
            ]
            self._emit(
                ResourceKind.REPORT,
                builder.report(fact, [url for url in results if url], context),
                fact,
                context,
                fact.fact_id,
            )
        elif fact.kind == FactKind.CARE_PLAN:
            self._export_care_plan(fact, context)
        elif fact.kind == FactKind.IMAGING_STUDY:
            self._emit(
                ResourceKind.IMAGING_STUDY, builder.imaging_study(fact, context), fact, context, fact.fact_id
            )

    def _export_care_plan(self, fact: ClinicalFact, context: BundleContext) -> None:
        """CareTeam, then Goals, then the CarePlan referencing both."""
        care_team = self._emit(
            ResourceKind.CARE_TEAM, self.builder.care_team(fact, context), fact, context, fact.fact_id
        )
        goal_urls = []
        for description in fact.attributes.get("goals", []):
            goal = self._emit(ResourceKind.GOAL, self.builder.goal(description, fact, context), fact, context)
            goal_urls.append(goal["fullUrl"])
        self._emit(
            ResourceKind.CARE_PLAN,
            self.builder.care_plan(fact, care_team["fullUrl"], goal_urls, context),
            fact,
            context,
            fact.fact_id,
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_bundle(self, context: BundleContext) -> dict[str, Any]:
        return context.to_bundle(self.config.export.bundle_type)

    def to_json(self, context: BundleContext, indent: int | None = None) -> str:
        """Serialize an exported bundle to JSON string."""
        if indent is None:
            indent = self.config.export.indent
        return json.dumps(self.to_bundle(context), indent=indent, ensure_ascii=False)

    def save(self, context: BundleContext, filepath: str | Path, indent: int | None = None) -> None:
        """Save an exported bundle to file."""
        path = Path(filepath)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_json(context, indent))
