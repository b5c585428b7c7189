"""
Tests for the scan engine.
"""

import os
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlscanner.config import ConfigurationError
from sqlscanner.core.engine import ScanEngine, create_engine
from sqlscanner.core.rules import AnalysisContext, RuleRegistry
from sqlscanner.parsers.perl import parse_document
from sqlscanner.rules.sql_injection import PreventSQLInjectionRule

EXAMPLES_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "examples")

VULNERABLE = 'my $sql = "SELECT * FROM users WHERE id = $id";\n'
CLEAN = 'my $sql = "SELECT * FROM users WHERE id = ?";\n'


class TestScanEngine:
    """Tests for the main scan engine."""

    def test_engine_creation(self):
        """Test that engine can be created with defaults."""
        engine = ScanEngine()

        assert engine.max_workers == 4
        assert engine.rule_ids == ["SEC-SQLI-001"]

    def test_bad_policy_fails_early(self):
        """Test that malformed policy options are rejected at construction."""
        with pytest.raises(ConfigurationError):
            ScanEngine({"policy": {"prefer_upper_case_keywords": "sometimes"}})

    def test_disabled_rules(self):
        """Test that a disabled rule does not run."""
        engine = ScanEngine({"disabled_rules": ["SEC-SQLI-001"]})

        assert engine.rule_ids == []
        assert engine.scan_content(VULNERABLE) == []

    def test_scan_content(self):
        """Test scanning code directly."""
        findings = ScanEngine().scan_content(VULNERABLE, "inline.pl")

        assert [(f.expression, f.location.file_path, f.location.start_line) for f in findings] == [
            ("$id", "inline.pl", 1),
        ]

    def test_policy_options_reach_the_rule(self):
        """Test that engine policy options configure the rule."""
        code = 'my $s = "SELECT * FROM t WHERE id IN (@{[ My::DB::in_list(@ids) ]})";\n'

        assert len(ScanEngine().scan_content(code)) == 1
        assert ScanEngine({"policy": {"safe_functions": "My::DB::in_list"}}).scan_content(code) == []


class TestFileDiscovery:
    """Tests for finding Perl files."""

    def test_extensions(self, tmp_path):
        """Test that Perl extensions are recognized."""
        engine = ScanEngine()
        for name in ("a.pl", "b.pm", "c.t", "d.cgi", "e.psgi", "f.py", "g.txt"):
            (tmp_path / name).write_text(VULNERABLE)

        found = [os.path.basename(p) for p in engine.discover_files(str(tmp_path))]

        assert found == ["a.pl", "b.pm", "c.t", "d.cgi", "e.psgi"]

    def test_shebang(self, tmp_path):
        """Test that extensionless perl scripts are found."""
        (tmp_path / "report").write_text("#!/usr/bin/env perl\n" + VULNERABLE)
        (tmp_path / "deploy").write_text("#!/bin/sh\necho hi\n")

        found = [os.path.basename(p) for p in ScanEngine().discover_files(str(tmp_path))]

        assert found == ["report"]

    def test_ignore_patterns(self, tmp_path):
        """Test that ignored directories are skipped."""
        (tmp_path / "blib" / "lib").mkdir(parents=True)
        (tmp_path / "blib" / "lib" / "App.pm").write_text(VULNERABLE)
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / "App.pm").write_text(VULNERABLE)

        found = list(ScanEngine().discover_files(str(tmp_path)))

        assert found == [str(tmp_path / "lib" / "App.pm")]

    def test_include_patterns(self, tmp_path):
        """Test that include patterns restrict the files scanned."""
        (tmp_path / "script.pl").write_text(VULNERABLE)
        (tmp_path / "Module.pm").write_text(VULNERABLE)

        engine = ScanEngine({"include_patterns": ["*.pm"]})
        found = [os.path.basename(p) for p in engine.discover_files(str(tmp_path))]

        assert found == ["Module.pm"]

    def test_max_file_size(self, tmp_path):
        """Test that oversized files are skipped."""
        (tmp_path / "big.pl").write_text(VULNERABLE * 100)

        engine = ScanEngine({"max_file_size": 100})

        assert list(engine.discover_files(str(tmp_path))) == []

    def test_single_file_target(self, tmp_path):
        """Test that a file target is scanned whatever its name."""
        target = tmp_path / "query.inc"
        target.write_text(VULNERABLE)

        assert list(ScanEngine().discover_files(str(target))) == [str(target)]


class TestScan:
    """Tests for complete scans."""

    def test_scan_directory(self, tmp_path):
        """Test a scan over several files."""
        (tmp_path / "bad.pl").write_text(VULNERABLE)
        (tmp_path / "good.pl").write_text(CLEAN)
        (tmp_path / "notes.txt").write_text(VULNERABLE)

        result = ScanEngine().scan(str(tmp_path))

        assert result.files_scanned == 2
        assert result.total_findings == 1
        assert result.findings[0].location.file_path == str(tmp_path / "bad.pl")
        assert result.rules_applied == ["SEC-SQLI-001"]
        assert result.errors == []

    def test_parallel_scan_is_ordered(self, tmp_path):
        """Test that findings are sorted whatever the worker count."""
        for i in range(6):
            (tmp_path / f"m{i}.pl").write_text(VULNERABLE + 'my $q = "DELETE FROM t WHERE a = $a";\n')

        serial = ScanEngine({"max_workers": 1}).scan(str(tmp_path))
        parallel = ScanEngine({"max_workers": 4}).scan(str(tmp_path))

        def key(result):
            return [(f.location.file_path, f.location.start_line, f.expression) for f in result.findings]

        assert key(serial) == key(parallel)
        assert len(serial.findings) == 12

    def test_suppression_comments(self, tmp_path):
        """Test trailing and preceding suppression comments."""
        source = (
            'my $a1 = "SELECT * FROM t WHERE a = $a";  # nosec\n'
            "## no critic (ValuesAndExpressions::ProhibitInterpolationOfLiterals)\n"
            'my $b1 = "SELECT * FROM t WHERE b = $b";\n'
            'my $c1 = "SELECT * FROM t WHERE c = $c";\n'
        )
        (tmp_path / "s.pl").write_text(source)

        result = ScanEngine().scan(str(tmp_path))
        suppressed = {f.expression: f.suppressed for f in result.findings}

        assert suppressed == {"$a": True, "$b": True, "$c": False}
        assert result.total_findings == 1
        assert result.suppressed_count == 2

    def test_rule_errors_are_collected(self, tmp_path, monkeypatch):
        """Test that a failing rule is reported in the result."""
        def broken(self, context):
            raise RuntimeError("boom")

        monkeypatch.setattr(PreventSQLInjectionRule, "analyze", broken)
        (tmp_path / "a.pl").write_text(VULNERABLE)

        result = ScanEngine().scan(str(tmp_path))

        assert result.findings == []
        assert len(result.errors) == 1
        assert "SEC-SQLI-001" in result.errors[0]
        assert "boom" in result.errors[0]

    def test_tokenizer_errors_are_collected(self, tmp_path, monkeypatch):
        """Test that a file the tokenizer chokes on does not abort the scan."""
        import sqlscanner.core.engine as engine_module

        def picky(content, path="<unknown>", version=0):
            if path.endswith("broken.pl"):
                raise ValueError("unterminated heredoc")
            return parse_document(content, path=path, version=version)

        monkeypatch.setattr(engine_module, "parse_document", picky)
        (tmp_path / "broken.pl").write_text(VULNERABLE)
        (tmp_path / "fine.pl").write_text(VULNERABLE)

        result = ScanEngine({"max_workers": 2}).scan(str(tmp_path))

        assert [f.location.file_path for f in result.findings] == [str(tmp_path / "fine.pl")]
        assert len(result.errors) == 1
        assert "broken.pl" in result.errors[0]
        assert "unterminated heredoc" in result.errors[0]

    def test_example_file(self):
        """Test the bundled example script."""
        path = os.path.join(EXAMPLES_DIR, "vulnerable_queries.pl")

        result = ScanEngine().scan(path)
        found = [(f.expression, f.location.start_line, f.suppressed) for f in result.findings]

        assert found == [
            ("$name", 11, False),
            ("$args->{status}", 31, False),
            ("$where", 40, True),
        ]

    def test_create_engine_from_config(self, tmp_path):
        """Test building an engine from a configuration file."""
        config_file = tmp_path / "sqlscanner.yaml"
        config_file.write_text(
            "scan:\n"
            "  max_workers: 2\n"
            "policy:\n"
            "  safe_functions: My::DB::in_list\n"
        )

        engine = create_engine(str(config_file), max_file_size=1024)

        assert engine.max_workers == 2
        assert engine.max_file_size == 1024
        assert engine.policy_options == {"safe_functions": "My::DB::in_list"}


class TestAnalysisContext:
    """Tests for the analysis context."""

    def make_context(self, content):
        return AnalysisContext(file_path="t.pl", content=content, document=parse_document(content))

    def test_snippet(self):
        """Test snippet extraction with context lines."""
        context = self.make_context("one\ntwo\nthree\nfour\nfive\n")
        snippet = context.get_snippet(3, context_lines=1)

        assert snippet.code == "three"
        assert snippet.context_before == ["two"]
        assert snippet.context_after == ["four"]

    def test_suppressed_lines(self):
        """Test which lines suppression comments cover."""
        context = self.make_context("$a; # sqlscanner-ignore\n# nosec\n$b;\n$c;\n")

        assert context.is_line_suppressed(1)
        assert context.is_line_suppressed(3)
        assert not context.is_line_suppressed(4)


class TestRuleRegistry:
    """Tests for the rule registry."""

    def test_singleton(self):
        """Test that the registry is shared."""
        assert RuleRegistry.get_instance() is RuleRegistry.get_instance()

    def test_fresh_instances(self):
        """Test that each call creates new rule instances."""
        registry = RuleRegistry.get_instance()
        first = registry.create_rules()
        second = registry.create_rules()

        assert [type(r) for r in first] == [PreventSQLInjectionRule]
        assert first[0] is not second[0]

    def test_language_filter(self):
        """Test that rules are only created for their languages."""
        assert RuleRegistry.get_instance().create_rules(language="python") == []

    def test_duplicate_rule_id(self):
        """Test that two classes cannot share a rule id."""
        class Impostor(PreventSQLInjectionRule):
            pass

        registry = RuleRegistry()
        registry.register(PreventSQLInjectionRule)
        registry.register(PreventSQLInjectionRule)

        with pytest.raises(ValueError):
            registry.register(Impostor)

    def test_metadata_lookup(self):
        """Test looking up rule metadata by id."""
        registry = RuleRegistry.get_instance()

        assert registry.get_metadata("SEC-SQLI-001").cwe_id == "CWE-89"
        assert registry.get_metadata("NOPE") is None
