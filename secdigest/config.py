"""
Configuration management for secdigest.

Loads and validates:
- rules/security_rules.yml: Scoring rules (window, threshold, weights, guide tags)
- secdigest.yml: Run settings (target repo, paths, fetch and render limits)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from loguru import logger


DEFAULT_THRESHOLD = 8
DEFAULT_RULES_PATH = "rules/security_rules.yml"
DEFAULT_OUTPUT_PATH = "docs/index.md"

# Case-sensitive, single-line: "^"/"$" anchor the whole text and "." stops at newlines.
PATTERN_FLAGS = 0


class ConfigError(Exception):
    """Malformed rule document or settings file. Always fatal."""


class TimeUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


@dataclass(frozen=True)
class WindowConfig:
    """Lookback horizon for merged PRs."""
    unit: TimeUnit = TimeUnit.HOURS
    value: int = 24

    @property
    def delta(self) -> timedelta:
        return timedelta(**{self.unit.value: self.value})

    def start(self, now: datetime) -> datetime:
        return now - self.delta


@dataclass(frozen=True)
class WeightedPattern:
    """A regex pattern and the weight it contributes when it matches."""
    pattern: str
    regex: re.Pattern = field(compare=False, repr=False)
    weight: float = 0


@dataclass(frozen=True)
class GuideMapping:
    """Links a security-guide tag to keyword/path conditions and an optional bonus."""
    tag: str
    score_bonus: float = 0
    keyword_patterns: tuple[WeightedPattern, ...] = ()
    path_patterns: tuple[WeightedPattern, ...] = ()


@dataclass(frozen=True)
class RuleSet:
    """Normalized, read-only scoring rules. Built once per run by load()."""
    window: WindowConfig = field(default_factory=WindowConfig)
    decision_threshold: float = DEFAULT_THRESHOLD
    strong_signals: tuple[WeightedPattern, ...] = ()
    label_weights: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    text_keyword_weights: tuple[WeightedPattern, ...] = ()
    path_weights: tuple[WeightedPattern, ...] = ()
    guide_mappings: tuple[GuideMapping, ...] = ()


def to_number(value: Any) -> float:
    """Coerce a weight to a number. Anything unparsable (or NaN) becomes 0."""
    if value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if math.isnan(number):
        return 0
    if number.is_integer():
        return int(number)
    return number


def compile_pattern(pattern: Any, where: str) -> re.Pattern:
    if not isinstance(pattern, str):
        raise ConfigError(f"{where}: pattern must be a string, got {pattern!r}")
    try:
        return re.compile(pattern, PATTERN_FLAGS)
    except re.error as e:
        raise ConfigError(f"{where}: invalid pattern {pattern!r}: {e}") from e


def _section(data: Mapping[str, Any], key: str, expected: type, where: str | None = None) -> Any:
    """Return data[key], defaulting to an empty value of the expected type."""
    value = data.get(key)
    if value is None:
        return expected()
    if not isinstance(value, expected):
        raise ConfigError(
            f"{where or key}: expected a {expected.__name__}, got {type(value).__name__}"
        )
    return value


def _compile_weights(weights: Mapping[Any, Any], where: str) -> tuple[WeightedPattern, ...]:
    return tuple(
        WeightedPattern(
            pattern=str(pattern),
            regex=compile_pattern(str(pattern), where),
            weight=to_number(weight),
        )
        for pattern, weight in weights.items()
    )


def _pattern_text(pattern: Any) -> Any:
    # Unquoted YAML numbers (`- 2024`) are still pattern text.
    if isinstance(pattern, (int, float)) and not isinstance(pattern, bool):
        return str(pattern)
    return pattern


def _compile_patterns(patterns: list[Any], where: str) -> tuple[WeightedPattern, ...]:
    texts = [_pattern_text(p) for p in patterns]
    return tuple(
        WeightedPattern(pattern=p, regex=compile_pattern(p, where))
        for p in texts
    )


def _parse_window(data: Mapping[str, Any]) -> WindowConfig:
    raw_unit = data.get("unit", data.get("type", TimeUnit.HOURS.value))
    try:
        unit = TimeUnit(str(raw_unit).lower())
    except ValueError:
        choices = ", ".join(u.value for u in TimeUnit)
        raise ConfigError(f"window: unknown unit {raw_unit!r} (expected one of {choices})")

    raw_value = data.get("value", 24)
    error = ConfigError(f"window: value must be a positive integer, got {raw_value!r}")
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, str)):
        raise error
    try:
        value = int(raw_value)
    except ValueError:
        raise error
    if value <= 0:
        raise error
    return WindowConfig(unit=unit, value=value)


def _parse_threshold(data: Mapping[str, Any]) -> float:
    raw = data.get("threshold")
    if raw is None:
        return DEFAULT_THRESHOLD
    try:
        number = float(raw)
    except (TypeError, ValueError, OverflowError):
        raise ConfigError(f"decision: threshold must be a number, got {raw!r}")
    if math.isnan(number):
        raise ConfigError(f"decision: threshold must be a number, got {raw!r}")
    return int(number) if number.is_integer() else number


def _parse_guide_mappings(entries: list[Any]) -> tuple[GuideMapping, ...]:
    mappings = []
    for i, entry in enumerate(entries):
        where = f"securityGuideMapping[{i}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{where}: expected a dict, got {type(entry).__name__}")
        tag = entry.get("tag")
        if not tag:
            raise ConfigError(f"{where}: missing tag")
        mappings.append(GuideMapping(
            tag=str(tag),
            score_bonus=to_number(entry.get("scoreBonus")),
            keyword_patterns=_compile_patterns(
                _section(entry, "keywords", list, f"{where}.keywords"), f"{where}.keywords"
            ),
            path_patterns=_compile_patterns(
                _section(entry, "paths", list, f"{where}.paths"), f"{where}.paths"
            ),
        ))
    return tuple(mappings)


def load(raw: Mapping[str, Any] | None) -> RuleSet:
    """
    Normalize a raw rule document into a RuleSet.

    Each of the five sections (window, decision, strongSignals, scoring,
    securityGuideMapping) is defaulted independently when absent. Weights
    that are not numbers count as 0. Any malformed section or pattern
    raises ConfigError; a partial RuleSet is never returned.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"rule document must be a mapping, got {type(raw).__name__}")

    window = _parse_window(_section(raw, "window", dict))
    decision = _section(raw, "decision", dict)
    strong = _section(raw, "strongSignals", dict)
    scoring = _section(raw, "scoring", dict)

    label_weights = {
        str(label): to_number(weight)
        for label, weight in _section(scoring, "labelWeights", dict, "scoring.labelWeights").items()
    }

    return RuleSet(
        window=window,
        decision_threshold=_parse_threshold(decision),
        strong_signals=_compile_patterns(
            _section(strong, "patterns", list, "strongSignals.patterns"),
            "strongSignals.patterns",
        ),
        label_weights=MappingProxyType(label_weights),
        text_keyword_weights=_compile_weights(
            _section(scoring, "textKeywordWeights", dict, "scoring.textKeywordWeights"),
            "scoring.textKeywordWeights",
        ),
        path_weights=_compile_weights(
            _section(scoring, "pathWeights", dict, "scoring.pathWeights"),
            "scoring.pathWeights",
        ),
        guide_mappings=_parse_guide_mappings(_section(raw, "securityGuideMapping", list)),
    )


def load_rules(path: Path) -> RuleSet:
    """Load and normalize a YAML rule document."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Rule file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    rules = load(data)
    logger.debug(
        "Loaded rules from {}: {} strong signals, {} labels, {} text, {} path, {} guide",
        path,
        len(rules.strong_signals),
        len(rules.label_weights),
        len(rules.text_keyword_weights),
        len(rules.path_weights),
        len(rules.guide_mappings),
    )
    return rules


def _int_setting(data: Mapping[str, Any], key: str, default: int, section: str) -> int:
    raw = data.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"{section}.{key}: expected an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError, OverflowError):
        raise ConfigError(f"{section}.{key}: expected an integer, got {raw!r}")


@dataclass
class FetchConfig:
    """How much to pull from GitHub per run."""
    search_buffer_hours: int = 24  # Search API filters by date only
    max_file_pages: int = 3  # 100 files per page; larger PRs are truncated


@dataclass
class RenderConfig:
    """Digest rendering limits."""
    max_files: int = 20
    max_hits: int = 8


@dataclass
class DigestConfig:
    """Complete run configuration."""
    repo: str = "rails/rails"  # full_name like "owner/repo"
    rules: str = DEFAULT_RULES_PATH
    output: str = DEFAULT_OUTPUT_PATH
    fetch: FetchConfig = field(default_factory=FetchConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    root: Path = field(default_factory=Path.cwd)

    @property
    def rules_path(self) -> Path:
        return self._resolve(self.rules)

    @property
    def output_path(self) -> Path:
        return self._resolve(self.output)

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.root / path
        return path

    @classmethod
    def load(cls, repo_root: Path) -> "DigestConfig":
        """Load secdigest.yml from the repo root; missing file means defaults."""
        config_path = repo_root / "secdigest.yml"
        data: dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{config_path}: expected a mapping")
        return cls._parse(data, repo_root)

    @classmethod
    def _parse(cls, data: dict[str, Any], repo_root: Path) -> "DigestConfig":
        fetch_data = _section(data, "fetch", dict)
        render_data = _section(data, "render", dict)
        return cls(
            repo=data.get("repo", "rails/rails"),
            rules=data.get("rules", DEFAULT_RULES_PATH),
            output=data.get("output", DEFAULT_OUTPUT_PATH),
            fetch=FetchConfig(
                search_buffer_hours=_int_setting(fetch_data, "search_buffer_hours", 24, "fetch"),
                max_file_pages=_int_setting(fetch_data, "max_file_pages", 3, "fetch"),
            ),
            render=RenderConfig(
                max_files=_int_setting(render_data, "max_files", 20, "render"),
                max_hits=_int_setting(render_data, "max_hits", 8, "render"),
            ),
            root=repo_root,
        )


def get_repo_root() -> Path:
    """Find the repository root (directory containing .git)."""
    current = Path.cwd()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    # No .git found, use current directory
    return Path.cwd()
