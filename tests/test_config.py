"""
Tests for configuration loading.
"""

import json
import logging
import os
import sys

import pytest
import yaml

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlscanner.config import (
    ConfigurationError,
    PolicyConfig,
    ScanConfig,
    create_default_config,
    find_config,
    load_config,
    load_scan_config,
)


class TestPolicyConfig:
    """Tests for policy option parsing."""

    def test_defaults(self):
        """Test the default policy."""
        policy = PolicyConfig.from_options()

        assert policy.quoting_methods == frozenset({"quote", "quote_identifier"})
        assert policy.safe_functions == frozenset()
        assert policy.prefer_upper_case_keywords is False
        assert "die" in policy.safe_contexts
        assert "croak" in policy.safe_contexts

    def test_space_separated_lists(self):
        """Test the space-separated option format."""
        policy = PolicyConfig.from_options({
            "quoting_methods": "db_quote  quote_name",
            "safe_functions": "My::DB::in_list Other::safe",
        })

        assert policy.quoting_methods == frozenset({"db_quote", "quote_name"})
        assert policy.safe_functions == frozenset({"My::DB::in_list", "Other::safe"})

    def test_list_values(self):
        """Test YAML-style lists."""
        policy = PolicyConfig.from_options({"safe_functions": ["My::DB::in_list", "A::b"]})

        assert policy.safe_functions == frozenset({"My::DB::in_list", "A::b"})

    @pytest.mark.parametrize("value, expected", [
        (True, True),
        ("1", True),
        ("yes", True),
        (0, False),
        ("false", False),
        ("", False),
    ])
    def test_boolean_values(self, value, expected):
        """Test accepted boolean spellings."""
        policy = PolicyConfig.from_options({"prefer_upper_case_keywords": value})

        assert policy.prefer_upper_case_keywords is expected

    def test_unknown_option(self):
        """Test that unknown options are rejected."""
        with pytest.raises(ConfigurationError, match="quoting_method"):
            PolicyConfig.from_options({"quoting_method": "quote"})

    def test_invalid_name(self):
        """Test that names must look like Perl identifiers."""
        with pytest.raises(ConfigurationError):
            PolicyConfig.from_options({"safe_functions": "My::DB::in_list()"})

    def test_immutable(self):
        """Test that a parsed policy cannot be changed."""
        policy = PolicyConfig.from_options()

        with pytest.raises(AttributeError):
            policy.prefer_upper_case_keywords = True


class TestScanConfig:
    """Tests for the scanner configuration."""

    def test_from_dict(self):
        """Test flattening and key aliases."""
        config = ScanConfig.from_dict({
            "scan": {"target": "lib", "exclude": ["t/**"], "max_workers": 8},
            "policy": {"safe_functions": "My::DB::in_list"},
            "output": {"format": "json", "color": False},
        })

        assert config.target == "lib"
        assert config.exclude_patterns == ["t/**"]
        assert config.max_workers == 8
        assert config.output.format == "json"
        assert config.output.color is False

    def test_unknown_keys_are_logged(self, caplog):
        """Test that unknown keys are ignored with a warning."""
        with caplog.at_level(logging.WARNING, logger="sqlscanner.config"):
            config = ScanConfig.from_dict({"severity": "high"})

        assert config.target == "."
        assert "severity" in caplog.text

    def test_bad_policy(self):
        """Test that the policy section is validated."""
        with pytest.raises(ConfigurationError):
            ScanConfig.from_dict({"policy": {"prefer_upper_case_keywords": "sometimes"}})

    def test_output_section(self, caplog):
        """Test that unknown output keys are ignored and formats are checked."""
        with caplog.at_level(logging.WARNING, logger="sqlscanner.config"):
            config = ScanConfig.from_dict({"output": {"format": "JSON", "theme": "dark"}})

        assert config.output.format == "json"
        assert "theme" in caplog.text

        with pytest.raises(ConfigurationError):
            ScanConfig.from_dict({"output": {"format": "xml"}})

    def test_engine_config(self):
        """Test conversion to engine options."""
        config = ScanConfig(include_patterns=["*.pm"], policy={"safe_functions": "A::b"})
        engine_config = config.to_engine_config()

        assert engine_config["include_patterns"] == ["*.pm"]
        assert engine_config["ignore_patterns"] == config.exclude_patterns
        assert engine_config["policy"] == {"safe_functions": "A::b"}
        assert engine_config["context_lines"] == 2


class TestConfigFiles:
    """Tests for reading configuration files."""

    def test_load_yaml(self, tmp_path):
        """Test a YAML configuration file."""
        path = tmp_path / ".sqlscanner.yaml"
        path.write_text("policy:\n  prefer_upper_case_keywords: true\n")

        assert load_config(str(path)) == {"policy": {"prefer_upper_case_keywords": True}}

    def test_load_json(self, tmp_path):
        """Test a JSON configuration file."""
        path = tmp_path / ".sqlscanner.json"
        path.write_text(json.dumps({"scan": {"max_workers": 1}}))

        assert load_config(str(path)) == {"scan": {"max_workers": 1}}

    def test_empty_yaml(self, tmp_path):
        """Test that an empty file is an empty configuration."""
        path = tmp_path / ".sqlscanner.yml"
        path.write_text("")

        assert load_config(str(path)) == {}

    def test_malformed(self, tmp_path):
        """Test that parse errors become configuration errors."""
        path = tmp_path / ".sqlscanner.yaml"
        path.write_text("policy: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_not_a_mapping(self, tmp_path):
        """Test that the top level must be a mapping."""
        path = tmp_path / ".sqlscanner.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_missing(self, tmp_path):
        """Test a missing file."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_find_config_walks_up(self, tmp_path):
        """Test that configuration files are found in parent directories."""
        (tmp_path / ".sqlscanner.yaml").write_text("{}\n")
        nested = tmp_path / "lib" / "App"
        nested.mkdir(parents=True)

        assert find_config(str(nested)) == str((tmp_path / ".sqlscanner.yaml").resolve())

    def test_load_scan_config(self, tmp_path):
        """Test loading a ScanConfig through discovery."""
        (tmp_path / "sqlscanner.yml").write_text("scan:\n  max_workers: 3\n")

        assert load_scan_config(start_dir=str(tmp_path)).max_workers == 3

    def test_default_config_round_trip(self):
        """Test that the generated default config loads cleanly."""
        data = yaml.safe_load(create_default_config())
        config = ScanConfig.from_dict(data)

        assert data["policy"]["quoting_methods"] == "quote quote_identifier"
        assert config.max_workers == 4
        assert PolicyConfig.from_options(config.policy) == PolicyConfig()
