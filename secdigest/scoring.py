"""
Security relevance scoring for secdigest.

Rule-based evaluation of a single PR:
1. Strong signals (first matching pattern adopts outright)
2. Label weights
3. Text keyword weights (once per pattern)
4. Path weights (once per matching file)
5. Security guide mappings (tag + optional bonus)

evaluate() is pure: no I/O and no shared state, so items can be scored
in any order or in parallel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from .config import RuleSet


class HitKind(str, Enum):
    LABEL = "label"
    TEXT = "text"
    PATH = "path"
    GUIDE = "guide"


@dataclass(frozen=True)
class CandidateItem:
    """The parts of a PR the rules look at."""
    title: str = ""
    body: str = ""
    labels: tuple[str, ...] = ()
    files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Labels are a set (first-seen order kept for stable hits); files keep duplicates.
        object.__setattr__(self, "title", self.title or "")
        object.__setattr__(self, "body", self.body or "")
        object.__setattr__(self, "labels", tuple(dict.fromkeys(self.labels or ())))
        object.__setattr__(self, "files", tuple(self.files or ()))

    @property
    def text(self) -> str:
        return f"{self.title}\n\n{self.body}"


@dataclass(frozen=True)
class Hit:
    """One scoring contribution."""
    kind: HitKind
    key: str
    weight: float
    file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "key": self.key, "weight": self.weight}
        if self.file is not None:
            data["file"] = self.file
        return data


@dataclass(frozen=True)
class DecisionRecord:
    """Adoption decision for one PR, with the trail that explains its score."""
    adopt: bool
    score: float
    strong_signal_match: str | None = None
    matched_tags: tuple[str, ...] = ()
    hits: tuple[Hit, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "adopt": self.adopt,
            "score": self.score,
            "strong_signal_match": self.strong_signal_match,
            "matched_tags": list(self.matched_tags),
            "hits": [h.to_dict() for h in self.hits],
        }


def find_strong_signal(text: str, rules: RuleSet) -> str | None:
    """Return the first strong-signal pattern that matches, in declared order."""
    for signal in rules.strong_signals:
        if signal.regex.search(text):
            return signal.pattern
    return None


def evaluate(item: CandidateItem, rules: RuleSet) -> DecisionRecord:
    """Score one PR against the rules and decide whether it goes in the digest."""
    text = item.text
    strong = find_strong_signal(text, rules)

    hits: list[Hit] = []

    for label in item.labels:
        weight = rules.label_weights.get(label, 0)
        if weight:
            hits.append(Hit(HitKind.LABEL, label, weight))

    for rule in rules.text_keyword_weights:
        if rule.regex.search(text):
            hits.append(Hit(HitKind.TEXT, rule.pattern, rule.weight))

    for rule in rules.path_weights:
        for path in item.files:
            if rule.regex.search(path):
                hits.append(Hit(HitKind.PATH, rule.pattern, rule.weight, file=path))

    tags: list[str] = []
    for mapping in rules.guide_mappings:
        keyword_hit = any(p.regex.search(text) for p in mapping.keyword_patterns)
        path_hit = any(
            p.regex.search(path) for path in item.files for p in mapping.path_patterns
        )
        if keyword_hit or path_hit:
            tags.append(mapping.tag)
            if mapping.score_bonus:
                hits.append(Hit(HitKind.GUIDE, mapping.tag, mapping.score_bonus))

    score = 0
    for hit in hits:
        score += hit.weight

    return DecisionRecord(
        adopt=strong is not None or score >= rules.decision_threshold,
        score=score,
        strong_signal_match=strong,
        matched_tags=tuple(tags),
        hits=tuple(hits),
    )


def evaluate_all(items: Iterable[CandidateItem], rules: RuleSet) -> list[DecisionRecord]:
    return [evaluate(item, rules) for item in items]
