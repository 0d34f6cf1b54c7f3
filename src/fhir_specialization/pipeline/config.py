"""
Pipeline Configuration

Configuration management for the specialization export pipeline.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from fhir_specialization.lookups import (
    DEFAULT_MUNICIPALITY_CODES,
    DEFAULT_PROFILE_MAPPING,
    DEFAULT_RACE_ETHNICITY_CODES,
)


@dataclass
class ExportConfig:
    """Bundle export configuration."""

    guide: str = "us-core"  # us-core, de-kds
    bundle_type: str = "collection"  # collection, transaction
    indent: int = 2


@dataclass
class LookupConfig:
    """Lookup table file locations."""

    municipality_codes: str = str(DEFAULT_MUNICIPALITY_CODES)
    race_ethnicity_codes: str = str(DEFAULT_RACE_ETHNICITY_CODES)
    profile_mapping: str = str(DEFAULT_PROFILE_MAPPING)


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""

    name: str = "fhir-specialization"
    version: str = "0.1.0"

    export: ExportConfig = field(default_factory=ExportConfig)
    lookups: LookupConfig = field(default_factory=LookupConfig)

    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineConfig":
        """Create config from dictionary."""
        config = cls()

        if "name" in data:
            config.name = data["name"]
        if "version" in data:
            config.version = data["version"]
        if "log_level" in data:
            config.log_level = str(data["log_level"]).upper()

        # Export config
        if "export" in data:
            exp = data["export"]
            config.export = ExportConfig(
                guide=exp.get("guide", "us-core"),
                bundle_type=exp.get("bundle_type", "collection"),
                indent=exp.get("indent", 2),
            )

        # Lookup tables, relative paths stay relative to the working directory
        if "lookups" in data:
            lk = data["lookups"]
            config.lookups = LookupConfig(
                municipality_codes=lk.get("municipality_codes", str(DEFAULT_MUNICIPALITY_CODES)),
                race_ethnicity_codes=lk.get("race_ethnicity_codes", str(DEFAULT_RACE_ETHNICITY_CODES)),
                profile_mapping=lk.get("profile_mapping", str(DEFAULT_PROFILE_MAPPING)),
            )

        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "name": self.name,
            "version": self.version,
            "log_level": self.log_level,
            "export": {
                "guide": self.export.guide,
                "bundle_type": self.export.bundle_type,
                "indent": self.export.indent,
            },
            "lookups": {
                "municipality_codes": self.lookups.municipality_codes,
                "race_ethnicity_codes": self.lookups.race_ethnicity_codes,
                "profile_mapping": self.lookups.profile_mapping,
            },
        }


def load_config(config_path: str | Path) -> PipelineConfig:
    """Load configuration from YAML file."""
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    return PipelineConfig.from_dict(data or {})
