"""
Address Parser/Formatter

Split a free-text address line into house number, street name, street type
and optional secondary unit, and reassemble it in German street-first order.

    "42 Example Allee"      → ExampleAllee 42
    "7 Linden-Weg Apt 3"    → LindenWeg 7, Apt 3
"""

from dataclasses import dataclass
import re

from fhir_specialization.errors import AddressFormatError

STREET_TYPES = ["Straße", "Strasse", "Str.", "Allee", "Weg", "Platz"]
UNIT_TYPES = ["Unit", "Apt", "Suite", "Apartment", "Appartement", "Stockwerk"]

_STREET_TYPE = "|".join(re.escape(t) for t in STREET_TYPES)
_UNIT_TYPE = "|".join(re.escape(t) for t in UNIT_TYPES)

# number first, as produced by the base builder
PATTERN_NUMBER_FIRST = re.compile(
    rf"^(?P<house_number>\d+) (?P<street_name>\w+)[ -](?P<street_type>{_STREET_TYPE})"
    rf"(?: (?P<unit_type>{_UNIT_TYPE}) (?P<unit_number>\d+))?$"
)

# street first, as written in Germany; no street type is a suffix of another,
# so the lazy name group splits exactly where the formatter joined
PATTERN_STREET_FIRST = re.compile(
    rf"^(?P<street_name>\w+?)(?P<street_type>{_STREET_TYPE}) (?P<house_number>\d+)"
    rf"(?:, (?P<unit_type>{_UNIT_TYPE}) (?P<unit_number>\d+))?$"
)


@dataclass(frozen=True)
class AddressComponents:
    """Structured parts of a single address line."""

    house_number: str
    street_name: str
    street_type: str
    unit_type: str | None = None
    unit_number: str | None = None

    @property
    def street(self) -> str:
        """Street name joined with its type, e.g. ``ExampleAllee``."""
        return f"{self.street_name}{self.street_type}"

    @property
    def additional_locator(self) -> str | None:
        """Secondary unit designator and number, e.g. ``Apt 3``."""
        if self.unit_type is None:
            return None
        return f"{self.unit_type} {self.unit_number}"


def _components(match: re.Match) -> AddressComponents:
    return AddressComponents(
        house_number=match.group("house_number"),
        street_name=match.group("street_name"),
        street_type=match.group("street_type"),
        unit_type=match.group("unit_type"),
        unit_number=match.group("unit_number"),
    )


def parse_address_line(line: str) -> AddressComponents:
    """Parse a number-first line. Raises AddressFormatError on no match."""
    match = PATTERN_NUMBER_FIRST.match(line or "")
    if match is None:
        raise AddressFormatError(line)
    return _components(match)


def parse_street_first_line(line: str) -> AddressComponents:
    """Parse a line produced by :func:`format_street_first`."""
    match = PATTERN_STREET_FIRST.match(line or "")
    if match is None:
        raise AddressFormatError(line)
    return _components(match)


def format_street_first(components: AddressComponents) -> str:
    """Compose the line with the house number after the street."""
    line = f"{components.street} {components.house_number}"
    if components.additional_locator:
        line = f"{line}, {components.additional_locator}"
    return line
