"""
Configuration for the scanner.

Settings come from the nearest .sqlscanner.yaml (or .yml or .json) at or
above the scan target:

    scan:
      exclude: ["blib/**", "local/**"]
      max_workers: 4
    policy:
      quoting_methods: quote quote_identifier
      safe_functions: My::DB::in_list
      prefer_upper_case_keywords: false
    output:
      format: text

The policy section is parsed into an immutable PolicyConfig.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import yaml

logger = logging.getLogger(__name__)


# In lookup order within each directory
CONFIG_FILE_NAMES = [
    ".sqlscanner.yaml",
    ".sqlscanner.yml",
    ".sqlscanner.json",
    "sqlscanner.yaml",
    "sqlscanner.yml",
    "sqlscanner.json",
]

DEFAULT_QUOTING_METHODS = "quote quote_identifier"
DEFAULT_SAFE_CONTEXTS = "die croak confess carp cluck warn"

DEFAULT_EXCLUDE_PATTERNS = (".git/**", "blib/**", "local/**", "_build/**")

OUTPUT_FORMATS = ("text", "cli", "json", "sarif")

POLICY_OPTIONS = (
    "quoting_methods",
    "safe_functions",
    "prefer_upper_case_keywords",
    "safe_contexts",
)

NAME_RE = re.compile(r"^[A-Za-z_]\w*(?:::\w+)*$")
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigurationError(ValueError):
    """Raised when a configuration value is malformed."""


def _parse_names(option: str, value: Any) -> FrozenSet[str]:
    """Parse a space-separated name list (or a list of names)."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        names = value.split()
    elif isinstance(value, (list, tuple, set, frozenset)):
        names = []
        for item in value:
            if not isinstance(item, str):
                raise ConfigurationError(
                    f"{option}: expected names, got {type(item).__name__} {item!r}"
                )
            names.extend(item.split())
    else:
        raise ConfigurationError(
            f"{option}: expected a space-separated string or a list, got {type(value).__name__}"
        )

    for name in names:
        if not NAME_RE.match(name):
            raise ConfigurationError(f"{option}: {name!r} is not a valid function or method name")
    return frozenset(names)


def _parse_bool(option: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
    raise ConfigurationError(f"{option}: expected a boolean, got {value!r}")


@dataclass(frozen=True)
class PolicyConfig:
    """
    Options of the SQL injection policy.

    Parsed once when the policy is constructed and read-only afterwards.
    Configured name lists replace the defaults rather than extending them.
    """
    quoting_methods: FrozenSet[str] = frozenset(DEFAULT_QUOTING_METHODS.split())
    safe_functions: FrozenSet[str] = frozenset()
    prefer_upper_case_keywords: bool = False
    safe_contexts: FrozenSet[str] = frozenset(DEFAULT_SAFE_CONTEXTS.split())

    @classmethod
    def from_options(cls, options: Optional[Dict[str, Any]] = None) -> "PolicyConfig":
        """
        Build a PolicyConfig from raw option values.

        Raises:
            ConfigurationError: if an option is unknown or malformed.
        """
        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise ConfigurationError(f"policy options must be a mapping, got {type(options).__name__}")

        unknown = sorted(set(options) - set(POLICY_OPTIONS))
        if unknown:
            raise ConfigurationError(f"Unknown policy option(s): {', '.join(unknown)}")

        return cls(
            quoting_methods=_parse_names(
                "quoting_methods", options.get("quoting_methods", DEFAULT_QUOTING_METHODS)
            ),
            safe_functions=_parse_names("safe_functions", options.get("safe_functions", "")),
            prefer_upper_case_keywords=_parse_bool(
                "prefer_upper_case_keywords", options.get("prefer_upper_case_keywords", False)
            ),
            safe_contexts=_parse_names(
                "safe_contexts", options.get("safe_contexts", DEFAULT_SAFE_CONTEXTS)
            ),
        )


@dataclass
class OutputConfig:
    format: str = "text"
    output_file: Optional[str] = None
    verbose: bool = False
    show_suppressed: bool = False
    context_lines: int = 2
    color: bool = True

    def __post_init__(self):
        self.format = str(self.format).lower()
        if self.format not in OUTPUT_FORMATS:
            raise ConfigurationError(
                f"output.format: expected one of {', '.join(OUTPUT_FORMATS)}, got {self.format!r}"
            )


def _known_keys(cls, data: Dict[str, Any], section: str) -> Dict[str, Any]:
    """Drop keys ``cls`` does not define, warning about each one."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(k for k in data if k not in known)
    if unknown:
        logger.warning("Ignoring unknown %s configuration keys: %s", section, ", ".join(unknown))
    return {k: v for k, v in data.items() if k in known}


@dataclass
class ScanConfig:
    """Scanner settings: what to scan, the policy, and how to report."""
    target: str = "."
    exclude_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    include_patterns: Optional[List[str]] = None
    max_file_size: int = 10 * 1024 * 1024
    max_workers: int = 4

    policy: Dict[str, Any] = field(default_factory=dict)
    disabled_rules: List[str] = field(default_factory=list)

    output: OutputConfig = field(default_factory=OutputConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_engine_config(self) -> Dict[str, Any]:
        """Options understood by ``ScanEngine``."""
        return {
            "max_file_size": self.max_file_size,
            "max_workers": self.max_workers,
            "ignore_patterns": list(self.exclude_patterns),
            "include_patterns": self.include_patterns,
            "policy": dict(self.policy),
            "disabled_rules": list(self.disabled_rules),
            "context_lines": self.output.context_lines,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanConfig":
        """
        Build a config from the parsed file.

        Keys of the ``scan`` section may also sit at the top level, and
        ``include``/``exclude`` are accepted for the pattern lists. The
        policy is validated eagerly.
        """
        flat = dict(data)
        scan_section = flat.pop("scan", None)
        if isinstance(scan_section, dict):
            flat.update(scan_section)
        for alias, name in (("include", "include_patterns"), ("exclude", "exclude_patterns")):
            if alias in flat:
                flat[name] = flat.pop(alias)

        output = flat.pop("output", None)
        if output is not None:
            if not isinstance(output, dict):
                raise ConfigurationError("output: expected a mapping")
            flat["output"] = OutputConfig(**_known_keys(OutputConfig, output, "output"))

        config = cls(**_known_keys(cls, flat, "scan"))
        PolicyConfig.from_options(config.policy)
        return config


def load_config(path: str) -> Dict[str, Any]:
    """
    Read a YAML or JSON configuration file into a mapping.

    JSON is chosen by the ``.json`` suffix; anything else is read as
    YAML, and an empty YAML file is an empty configuration.
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.debug("Loading configuration from %s", config_path)
    text = config_path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if config_path.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path}: top level must be a mapping")
    return data


def find_config(start_path: str = ".") -> Optional[str]:
    """Nearest configuration file in ``start_path`` or one of its parents."""
    start = Path(start_path).resolve()
    if start.is_file():
        start = start.parent

    for directory in (start, *start.parents):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return str(candidate)
    return None


def load_scan_config(path: Optional[str] = None, start_dir: str = ".") -> ScanConfig:
    """Load ``path``, or the nearest config above ``start_dir``, or the defaults."""
    config_path = path or find_config(start_dir)
    if config_path is None:
        logger.debug("No configuration file found from %s", start_dir)
        return ScanConfig()
    return ScanConfig.from_dict(load_config(config_path))


def create_default_config() -> str:
    """YAML text for a starter configuration file holding the defaults."""
    defaults = ScanConfig()
    document = {
        "scan": {
            "target": defaults.target,
            "exclude": defaults.exclude_patterns,
            "max_file_size": defaults.max_file_size,
            "max_workers": defaults.max_workers,
        },
        "policy": {
            "quoting_methods": DEFAULT_QUOTING_METHODS,
            "safe_functions": "",
            "prefer_upper_case_keywords": False,
            "safe_contexts": DEFAULT_SAFE_CONTEXTS,
        },
        "output": {
            key: value
            for key, value in asdict(defaults.output).items()
            if key != "output_file"
        },
    }
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
