"""
Tests for pipeline configuration.

Copyright (c) 2024 Cleansheet LLC
License: CC BY 4.0
"""

from pathlib import Path
from typing import Any

import pytest
import yaml

from fhir_specialization.lookups import DEFAULT_MUNICIPALITY_CODES
from fhir_specialization.pipeline.config import (
    ExportConfig,
    LookupConfig,
    PipelineConfig,
    load_config,
)


class TestExportConfig:
    """Tests for ExportConfig."""

    def test_default_values(self):
        """Test default export configuration."""
        config = ExportConfig()

        assert config.guide == "us-core"
        assert config.bundle_type == "collection"
        assert config.indent == 2

    def test_custom_values(self):
        """Test custom export configuration."""
        config = ExportConfig(guide="de-kds", bundle_type="transaction", indent=0)

        assert config.guide == "de-kds"
        assert config.bundle_type == "transaction"


class TestLookupConfig:
    """Tests for LookupConfig."""

    def test_defaults_point_to_packaged_tables(self):
        """Test that default paths name the shipped files."""
        config = LookupConfig()

        assert config.municipality_codes == str(DEFAULT_MUNICIPALITY_CODES)
        assert Path(config.profile_mapping).name == "us_core_mapping.csv"


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_default_config(self):
        """Test default pipeline configuration."""
        config = PipelineConfig()

        assert config.name == "fhir-specialization"
        assert config.log_level == "INFO"
        assert isinstance(config.export, ExportConfig)
        assert isinstance(config.lookups, LookupConfig)

    def test_from_dict(self, sample_config_dict: dict[str, Any]):
        """Test creating config from dictionary."""
        config = PipelineConfig.from_dict(sample_config_dict)

        assert config.name == "test-pipeline"
        assert config.version == "1.0.0"
        assert config.log_level == "DEBUG"
        assert config.export.guide == "de-kds"
        assert config.export.bundle_type == "transaction"
        assert config.export.indent == 4

    def test_from_dict_partial(self):
        """Test creating config from partial dictionary."""
        config = PipelineConfig.from_dict({"export": {"guide": "de-kds"}})

        assert config.export.guide == "de-kds"
        assert config.export.bundle_type == "collection"
        assert config.lookups.municipality_codes == str(DEFAULT_MUNICIPALITY_CODES)

    def test_lookup_paths(self, tmp_path: Path):
        """Test overriding a single lookup table."""
        config = PipelineConfig.from_dict({"lookups": {"profile_mapping": str(tmp_path / "map.csv")}})

        assert config.lookups.profile_mapping == str(tmp_path / "map.csv")
        assert config.lookups.municipality_codes == str(DEFAULT_MUNICIPALITY_CODES)

    def test_to_dict_round_trip(self, sample_config_dict: dict[str, Any]):
        """Test that to_dict output loads back to an equal config."""
        config = PipelineConfig.from_dict(sample_config_dict)
        assert PipelineConfig.from_dict(config.to_dict()) == config


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_config(self, temp_config_file: Path):
        """Test loading config from YAML file."""
        config = load_config(temp_config_file)

        assert config.name == "test-pipeline"
        assert config.export.guide == "de-kds"

    def test_load_config_not_found(self, tmp_path: Path):
        """Test loading non-existent config file."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_load_empty_config(self, tmp_path: Path):
        """Test that an empty file yields defaults."""
        config_path = tmp_path / "empty.yaml"
        config_path.write_text("")

        assert load_config(config_path) == PipelineConfig()

    def test_load_written_config(self, tmp_path: Path):
        """Test loading a config written by to_dict."""
        config_path = tmp_path / "config.yaml"
        config = PipelineConfig(log_level="WARNING")
        config_path.write_text(yaml.dump(config.to_dict()))

        assert load_config(config_path).log_level == "WARNING"
