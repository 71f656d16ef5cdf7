"""
Digest pipeline for secdigest.

collect_candidates -> build_digest -> (render)

Retrieval errors are not caught here; a failed request fails the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from loguru import logger

from .config import DigestConfig, RuleSet, WindowConfig
from .github import GitHubClient
from .scoring import CandidateItem, DecisionRecord, evaluate


def parse_timestamp(value: str) -> datetime:
    """Parse a GitHub ISO timestamp into an aware UTC datetime."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class PullRequestCandidate:
    """A merged PR inside the window, with everything scoring and rendering need."""
    number: int
    title: str
    body: str | None
    url: str
    merged_at: str
    labels: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)

    def to_item(self) -> CandidateItem:
        return CandidateItem(
            title=self.title,
            body=self.body,
            labels=tuple(self.labels),
            files=tuple(self.files),
        )


@dataclass
class DigestEntry:
    """An adopted PR and its decision."""
    pr: PullRequestCandidate
    decision: DecisionRecord


@dataclass
class DigestResult:
    repo: str
    generated_at: datetime
    since: datetime
    entries: list[DigestEntry] = field(default_factory=list)


def collect_candidates(
    client: GitHubClient,
    repo: str,
    window: WindowConfig,
    now: datetime,
    search_buffer_hours: int = 24,
    max_file_pages: int = 3,
) -> list[PullRequestCandidate]:
    """
    Fetch PRs merged inside the window.

    The Search API only filters by date, so the search starts a buffer
    earlier and each PR's merged_at is then checked exactly.
    """
    since = window.start(now)
    search_from = now - window.delta - timedelta(hours=search_buffer_hours)
    numbers = client.search_merged_pr_numbers(repo, search_from.date().isoformat())
    logger.info("Search returned {} merged PRs in {} since {}", len(numbers), repo, search_from.date())

    candidates = []
    for number in numbers:
        pr = client.get_pull(repo, number)
        if not pr.merged_at:
            continue
        if parse_timestamp(pr.merged_at) < since:
            logger.debug("PR #{} merged {} is before window start", number, pr.merged_at)
            continue

        candidates.append(PullRequestCandidate(
            number=pr.number or number,
            title=pr.title,
            body=pr.body,
            url=pr.html_url,
            merged_at=pr.merged_at,
            labels=client.get_issue_labels(repo, number),
            files=client.get_pull_files(repo, number, max_pages=max_file_pages),
        ))

    return candidates


def build_digest(candidates: list[PullRequestCandidate], rules: RuleSet) -> list[DigestEntry]:
    """Score candidates and keep adopted ones, newest merge first."""
    entries = []
    for pr in candidates:
        decision = evaluate(pr.to_item(), rules)
        logger.debug(
            "PR #{}: score={} adopt={} strong={}",
            pr.number, decision.score, decision.adopt, decision.strong_signal_match,
        )
        if decision.adopt:
            entries.append(DigestEntry(pr=pr, decision=decision))

    entries.sort(key=lambda e: (parse_timestamp(e.pr.merged_at), e.pr.number), reverse=True)
    return entries


def run_digest(
    client: GitHubClient,
    config: DigestConfig,
    rules: RuleSet,
    now: datetime | None = None,
) -> DigestResult:
    """One full run: collect, score, filter, sort."""
    now = now or datetime.now(timezone.utc)
    candidates = collect_candidates(
        client,
        config.repo,
        rules.window,
        now,
        search_buffer_hours=config.fetch.search_buffer_hours,
        max_file_pages=config.fetch.max_file_pages,
    )
    entries = build_digest(candidates, rules)
    logger.info("Adopted {} of {} merged PRs", len(entries), len(candidates))
    return DigestResult(
        repo=config.repo,
        generated_at=now,
        since=rules.window.start(now),
        entries=entries,
    )
