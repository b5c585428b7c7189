"""
Scan engine.

Walks a target for Perl sources, tokenizes each one and runs a fresh set
of registered rules over it. Results from all files are merged into a
single, deterministically ordered ScanResult.
"""

import fnmatch
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlscanner.core.findings import Finding, ScanResult
from sqlscanner.core.rules import AnalysisContext, Rule, registry
from sqlscanner.parsers.perl import parse_document

# Import rules to register them with the registry
import sqlscanner.rules  # noqa: F401

logger = logging.getLogger(__name__)


PERL_EXTENSIONS = frozenset({".pl", ".pm", ".t", ".cgi", ".psgi"})

# Build output, installed dependencies and VCS metadata
DEFAULT_IGNORE_PATTERNS = [
    ".git/**",
    ".svn/**",
    "blib/**",
    "local/**",
    "_build/**",
    "cover_db/**",
    "*.bak",
]

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

SUPPRESSION_REASON = "Inline suppression comment"


def _matches_any(patterns: Iterable[str], rel_path: str) -> bool:
    """Match a slash-separated relative path, or its last part, against globs."""
    name = rel_path.rstrip("/").rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(rel_path, p) or fnmatch.fnmatch(name, p) for p in patterns)


def has_perl_shebang(file_path: str) -> bool:
    try:
        with open(file_path, "r", encoding="utf-8", errors="ignore") as f:
            first_line = f.readline()
    except OSError:
        return False
    return first_line.startswith("#!") and "perl" in first_line


class ScanEngine:
    """
    Runs the registered rules over every Perl file under a target.

    Rules hold per-document state, so each file gets its own rule
    instances and files can be handed to a thread pool.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        options = dict(config or {})
        self.config = options
        self.registry = registry
        self.errors: List[str] = []

        self.max_workers: int = options.get("max_workers", 4)
        self.max_file_size: int = options.get("max_file_size", DEFAULT_MAX_FILE_SIZE)
        self.ignore_patterns: List[str] = options.get("ignore_patterns", DEFAULT_IGNORE_PATTERNS)
        self.include_patterns: Optional[List[str]] = options.get("include_patterns")
        self.disabled_rules: List[str] = options.get("disabled_rules", [])
        self.policy_options: Dict[str, Any] = options.get("policy", {})
        self.context_lines: int = options.get("context_lines", 2)

        # Building the rules once validates the policy options
        self.rule_ids = [rule.metadata.rule_id for rule in self.create_rules()]

    def create_rules(self) -> List[Rule]:
        return self.registry.create_rules(self.policy_options, disabled=self.disabled_rules)

    # -- discovery ---------------------------------------------------------

    def is_perl_file(self, file_path: str) -> bool:
        ext = os.path.splitext(file_path)[1].lower()
        if ext:
            return ext in PERL_EXTENSIONS
        return has_perl_shebang(file_path)

    def _relative(self, path: str, base_path: str, is_dir: bool = False) -> str:
        rel_path = os.path.relpath(path, base_path).replace(os.sep, "/")
        return rel_path + "/" if is_dir else rel_path

    def _is_wanted(self, file_path: str, base_path: str) -> bool:
        rel_path = self._relative(file_path, base_path)
        if _matches_any(self.ignore_patterns, rel_path):
            return False
        if self.include_patterns and not _matches_any(self.include_patterns, rel_path):
            return False
        try:
            size = os.path.getsize(file_path)
        except OSError:
            return False
        if size > self.max_file_size:
            logger.info("Skipping %s: larger than %d bytes", file_path, self.max_file_size)
            return False
        return self.is_perl_file(file_path)

    def discover_files(self, target_path: str) -> Iterator[str]:
        """
        Yield the Perl files under ``target_path`` in sorted walk order.

        A file target is always yielded, whatever its name. Directories
        matching an ignore pattern are pruned from the walk.
        """
        if os.path.isfile(target_path):
            yield target_path
            return

        for root, dirs, files in os.walk(target_path):
            dirs[:] = sorted(
                d for d in dirs
                if not _matches_any(
                    self.ignore_patterns,
                    self._relative(os.path.join(root, d), target_path, is_dir=True),
                )
            )
            for name in sorted(files):
                file_path = os.path.join(root, name)
                if self._is_wanted(file_path, target_path):
                    yield file_path

    # -- analysis ----------------------------------------------------------

    def build_context(self, file_path: str, content: str) -> AnalysisContext:
        document = parse_document(content, path=file_path)
        logger.debug("Tokenized %s: %d tokens", file_path, len(document.tokens))
        return AnalysisContext(
            file_path=file_path,
            content=content,
            document=document,
            context_lines=self.context_lines,
        )

    def analyze(self, context: AnalysisContext) -> Tuple[List[Finding], List[str]]:
        """Run fresh rules over one context, returning findings and rule errors."""
        findings: List[Finding] = []
        errors: List[str] = []

        for rule in self.create_rules():
            rule_id = rule.metadata.rule_id
            try:
                reported = list(rule.analyze(context))
            except Exception as e:
                logger.exception("Rule %s failed on %s", rule_id, context.file_path)
                errors.append(f"Error running rule {rule_id} on {context.file_path}: {e}")
                continue

            for finding in reported:
                if context.is_line_suppressed(finding.location.start_line):
                    finding.suppressed = True
                    finding.suppression_reason = SUPPRESSION_REASON
            findings.extend(reported)

        return findings, errors

    def scan_file(self, file_path: str) -> Tuple[List[Finding], List[str]]:
        try:
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError as e:
            logger.warning("Cannot read %s: %s", file_path, e)
            return [], [f"Error reading {file_path}: {e}"]

        try:
            context = self.build_context(file_path, content)
        except Exception as e:
            logger.exception("Tokenizing %s failed", file_path)
            return [], [f"Error tokenizing {file_path}: {e}"]

        return self.analyze(context)

    def _scan_all(self, files: List[str]) -> Iterator[Tuple[List[Finding], List[str]]]:
        if len(files) > 1 and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                yield from executor.map(self.scan_file, files)
        else:
            yield from map(self.scan_file, files)

    def scan(self, target_path: str) -> ScanResult:
        """
        Scan a file or directory.

        Findings are ordered by file, line and expression regardless of
        how many workers ran. Unreadable files and failing rules end up in
        ``ScanResult.errors`` and never abort the scan.
        """
        started = time.monotonic()
        files = list(self.discover_files(target_path))
        logger.info("Scanning %d file(s) under %s", len(files), target_path)

        findings: List[Finding] = []
        errors: List[str] = []
        for file_findings, file_errors in self._scan_all(files):
            findings.extend(file_findings)
            errors.extend(file_errors)

        findings.sort(key=Finding.sort_key)
        self.errors.extend(errors)

        return ScanResult(
            findings=findings,
            files_scanned=len(files),
            scan_time_seconds=round(time.monotonic() - started, 3),
            rules_applied=list(self.rule_ids),
            errors=errors,
        )

    def scan_content(self, content: str, file_path: str = "<stdin>") -> List[Finding]:
        """Scan source text that is not on disk, such as editor buffers."""
        findings, errors = self.analyze(self.build_context(file_path, content))
        self.errors.extend(errors)
        return sorted(findings, key=Finding.sort_key)


def create_engine(config_path: Optional[str] = None, **kwargs) -> ScanEngine:
    """
    Build an engine from an optional configuration file.

    Keyword arguments are engine options and win over the file.
    """
    options: Dict[str, Any] = {}

    if config_path:
        from sqlscanner.config import load_scan_config
        options = load_scan_config(config_path).to_engine_config()

    options.update(kwargs)
    return ScanEngine(options)
