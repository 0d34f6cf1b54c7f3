"""
Bundle Context

The resources produced so far for one person's export, addressable by
resource type, full URL and by the id of the record object they came from.
A context is owned by a single export run and never shared across persons.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
import uuid

from fhir_specialization.records import Clinician, PersonProfile, Provider

# fixed namespace so resource ids only depend on the person and export order
ID_NAMESPACE = uuid.UUID("8c5bf2a1-3f43-4f25-9a3e-6f0d2a0c7b11")


@dataclass
class BundleContext:
    """In-progress bundle for one person."""

    person: PersonProfile
    stop_time: datetime
    entries: list[dict[str, Any]] = field(default_factory=list)
    final_encounter_id: str | None = None
    _refs: dict[tuple[str, str], str] = field(default_factory=dict, repr=False)
    _by_url: dict[str, dict[str, Any]] = field(default_factory=dict, repr=False)
    _sequence: int = field(default=0, repr=False)

    def new_id(self, resource_type: str) -> str:
        """Deterministic resource id."""
        self._sequence += 1
        return str(uuid.uuid5(ID_NAMESPACE, f"{self.person.id}/{resource_type}/{self._sequence}"))

    def add(self, resource: dict[str, Any], source_id: str | None = None) -> dict[str, Any]:
        """Append a resource and index it. Returns the bundle entry."""
        if "id" not in resource:
            resource["id"] = self.new_id(resource["resourceType"])

        full_url = f"urn:uuid:{resource['id']}"
        entry = {"fullUrl": full_url, "resource": resource}
        self.entries.append(entry)
        self._by_url[full_url] = resource
        if source_id is not None:
            self._refs[(resource["resourceType"], source_id)] = full_url
        return entry

    def full_url(self, resource_type: str, source_id: str) -> str | None:
        """Full URL of the resource created from a record object."""
        return self._refs.get((resource_type, source_id))

    def resource(self, resource_type: str, source_id: str) -> dict[str, Any] | None:
        url = self.full_url(resource_type, source_id)
        return self._by_url.get(url) if url else None

    def get(self, full_url: str) -> dict[str, Any] | None:
        return self._by_url.get(full_url)

    def contains(self, resource_type: str, source_id: str) -> bool:
        return (resource_type, source_id) in self._refs

    def resources(self, resource_type: str) -> list[dict[str, Any]]:
        return [
            e["resource"] for e in self.entries if e["resource"]["resourceType"] == resource_type
        ]

    @property
    def patient_url(self) -> str | None:
        return self.full_url("Patient", self.person.id)

    @property
    def patient(self) -> dict[str, Any] | None:
        return self.resource("Patient", self.person.id)

    def organization_url(self, provider: Provider) -> str | None:
        return self.full_url("Organization", provider.id)

    def location_url(self, provider: Provider) -> str | None:
        return self.full_url("Location", provider.id)

    def practitioner_url(self, clinician: Clinician) -> str | None:
        return self.full_url("Practitioner", clinician.id)

    def to_bundle(self, bundle_type: str = "collection") -> dict[str, Any]:
        """Render the collected entries as a FHIR Bundle."""
        entries = []
        for entry in self.entries:
            wrapped = dict(entry)
            if bundle_type == "transaction":
                wrapped["request"] = {
                    "method": "POST",
                    "url": entry["resource"]["resourceType"],
                }
            entries.append(wrapped)

        return {
            "resourceType": "Bundle",
            "id": str(uuid.uuid5(ID_NAMESPACE, f"{self.person.id}/Bundle")),
            "type": bundle_type,
            "timestamp": self.stop_time.isoformat(),
            "entry": entries,
        }
