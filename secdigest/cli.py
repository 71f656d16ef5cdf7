"""
secdigest CLI - Daily digest of security-related merged PRs.

Commands:
    init      - Write sample secdigest.yml and rule file
    check     - Validate a rule file
    score     - Score PRs from a local YAML/JSON fixture
    generate  - Fetch merged PRs, score them and render the digest
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
import yaml
from dotenv import load_dotenv
from loguru import logger

from . import __version__
from .config import ConfigError, DigestConfig, RuleSet, get_repo_root, load_rules
from .digest import run_digest
from .github import GitHubAPIError, GitHubClient
from .render import render_digest, write_digest
from .scoring import CandidateItem, evaluate


SAMPLE_CONFIG = """\
# secdigest settings

repo: rails/rails                  # Repository to scan (owner/repo)
rules: rules/security_rules.yml    # Scoring rules, relative to this file
output: docs/index.md              # Rendered digest

fetch:
  search_buffer_hours: 24   # Search API is day-granular; look back a little further
  max_file_pages: 3         # 100 files per page; larger PRs are truncated

render:
  max_files: 20   # Files listed per PR
  max_hits: 8     # Score contributions listed per PR
"""

SAMPLE_RULES = """\
# secdigest scoring rules
# All patterns are Python regular expressions (case-sensitive, unanchored).

window:
  unit: hours     # minutes, hours, days, weeks
  value: 24

decision:
  threshold: 8    # Adopt a PR when its score reaches this

# Any match adopts the PR regardless of score (first match wins)
strongSignals:
  patterns:
    - "CVE-\\\\d{4}-\\\\d+"
    - "GHSA-[0-9a-z]{4}-[0-9a-z]{4}-[0-9a-z]{4}"
    - "[Ss]ecurity (fix|advisory|release)"

scoring:
  labelWeights:
    security: 5
    activerecord: 1
    actionpack: 1
    docs: -3
  # Each pattern counts once per PR, matched against "title\\n\\nbody"
  textKeywordWeights:
    "CVE": 6
    "XSS|[Cc]ross.site scripting": 4
    "CSRF|forgery": 4
    "SQL injection|sanitiz": 4
    "[Vv]ulnerab": 3
    "[Ee]scape": 2
    "typo": -4
  # Each pattern counts once per matching file
  pathWeights:
    "request_forgery_protection": 3
    "sanitiz": 2
    "/security/": 2
    "^guides/": -1

securityGuideMapping:
  - tag: csrf
    scoreBonus: 2
    keywords: ["CSRF", "forgery"]
    paths: ["request_forgery_protection"]
  - tag: sql-injection
    scoreBonus: 2
    keywords: ["SQL injection"]
    paths: ["sanitization"]
  - tag: xss
    scoreBonus: 0
    keywords: ["XSS", "html_safe"]
    paths: ["sanitize_helper"]
"""


def setup_logging(verbose: bool = False) -> None:
    """Send loguru output to stderr; stdout stays clean for --json / --stdout."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    )


def _load_rules_or_exit(path: Path) -> RuleSet:
    try:
        return load_rules(path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _load_config_or_exit() -> DigestConfig:
    try:
        return DigestConfig.load(get_repo_root())
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """secdigest - Digest of security-related PRs merged into a GitHub repository."""
    load_dotenv()
    load_dotenv(get_repo_root() / ".env")
    setup_logging(verbose)


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing files")
def init(force: bool):
    """Write sample settings and rules into the current repository."""
    repo_root = get_repo_root()
    click.echo(f"Initializing secdigest in: {repo_root}")

    for path, content in (
        (repo_root / "secdigest.yml", SAMPLE_CONFIG),
        (repo_root / "rules" / "security_rules.yml", SAMPLE_RULES),
    ):
        if path.exists() and not force:
            click.echo(f"  Skipped: {path} (already exists)")
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        click.echo(f"  Created: {path}")

    click.echo("\nNext steps:")
    click.echo("  1. Edit rules/security_rules.yml")
    click.echo("  2. Set GITHUB_TOKEN (optional, raises the rate limit)")
    click.echo("  3. Run: secdigest generate")


@main.command()
@click.option("--rules", "rules_path", type=click.Path(path_type=Path), help="Rule file (default from secdigest.yml)")
def check(rules_path: Path | None):
    """Validate a rule file and summarize it."""
    config = _load_config_or_exit()
    path = rules_path or config.rules_path
    rules = _load_rules_or_exit(path)

    click.echo(f"Rules OK: {path}")
    click.echo(f"  Window: {rules.window.value} {rules.window.unit.value}")
    click.echo(f"  Threshold: {rules.decision_threshold}")
    click.echo(f"  Strong signals: {len(rules.strong_signals)}")
    click.echo(f"  Label weights: {len(rules.label_weights)}")
    click.echo(f"  Text keyword weights: {len(rules.text_keyword_weights)}")
    click.echo(f"  Path weights: {len(rules.path_weights)}")
    click.echo(f"  Guide mappings: {', '.join(m.tag for m in rules.guide_mappings) or 'none'}")


def _read_items(path: Path) -> list[dict]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or []
    except yaml.YAMLError as e:
        raise click.BadParameter(f"{path}: {e}")
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise click.BadParameter(f"{path}: expected a list of items")
    return data


@main.command()
@click.argument("items_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--rules", "rules_path", type=click.Path(path_type=Path), help="Rule file (default from secdigest.yml)")
@click.option("--all", "include_all", is_flag=True, help="Include PRs that were not adopted")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def score(items_path: Path, rules_path: Path | None, include_all: bool, as_json: bool):
    """Score PRs from a local YAML/JSON file.

    The file holds a list of items with title, body, labels and files
    (plus an optional number). No network access is needed.

    Examples:

        secdigest score fixtures/prs.yml
        secdigest score replay.json --all --json
    """
    rules = _load_rules_or_exit(rules_path or _load_config_or_exit().rules_path)

    results = []
    for i, raw in enumerate(_read_items(items_path), 1):
        item = CandidateItem(
            title=raw.get("title"),
            body=raw.get("body"),
            labels=tuple(raw.get("labels") or ()),
            files=tuple(raw.get("files") or ()),
        )
        decision = evaluate(item, rules)
        if decision.adopt or include_all:
            results.append((raw.get("number", i), item, decision))

    if as_json:
        click.echo(json.dumps(
            [{"number": n, "title": item.title, **d.to_dict()} for n, item, d in results],
            indent=2,
        ))
        return

    if not results:
        click.echo("No matching PRs.")
        return

    for number, item, decision in results:
        icon = "✅" if decision.adopt else "❌"
        click.echo(f"{icon} #{number}: {item.title[:60]}")
        click.echo(f"    Score: {decision.score} (threshold {rules.decision_threshold})")
        if decision.strong_signal_match:
            click.echo(f"    Strong signal: {decision.strong_signal_match}")
        if decision.matched_tags:
            click.echo(f"    Tags: {', '.join(decision.matched_tags)}")
        for hit in decision.hits:
            on_file = f" on {hit.file}" if hit.file is not None else ""
            click.echo(f"      {hit.kind.value}: {hit.key}{on_file} ({hit.weight:+g})")
        click.echo()


@main.command()
@click.option("--repo", help="Repository to scan (owner/repo)")
@click.option("--rules", "rules_path", type=click.Path(path_type=Path), help="Rule file")
@click.option("--output", "output_path", type=click.Path(path_type=Path), help="Where to write the digest")
@click.option("--stdout", "to_stdout", is_flag=True, help="Print the digest instead of writing it")
def generate(repo: str | None, rules_path: Path | None, output_path: Path | None, to_stdout: bool):
    """Fetch recently merged PRs, score them and render the digest."""
    config = _load_config_or_exit()
    if repo:
        config.repo = repo

    # Rules are validated before any request is made.
    rules = _load_rules_or_exit(rules_path or config.rules_path)

    try:
        result = run_digest(GitHubClient(), config, rules)
    except GitHubAPIError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    markdown = render_digest(
        result,
        max_files=config.render.max_files,
        max_hits=config.render.max_hits,
    )

    if to_stdout:
        click.echo(markdown, nl=False)
        return

    path = write_digest(output_path or config.output_path, markdown)
    click.echo(f"Generated {path} with {len(result.entries)} PRs")


if __name__ == "__main__":
    main()
