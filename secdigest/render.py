"""
Markdown digest renderer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader

from .digest import DigestResult


def md_escape(value: Any) -> str:
    """Escape table pipes in user-supplied text."""
    if value is None:
        return ""
    return str(value).replace("|", "\\|")


def format_weight(weight: float) -> str:
    return f"{weight:+g}"


def format_score(score: float) -> str:
    if isinstance(score, int):
        return str(score)
    return f"{score:g}"


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _template_env() -> Environment:
    template_dir = Path(__file__).resolve().parent / "templates"
    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["md"] = md_escape
    env.filters["signed"] = format_weight
    env.filters["score"] = format_score
    return env


def render_digest(result: DigestResult, max_files: int = 20, max_hits: int = 8) -> str:
    template = _template_env().get_template("digest.md.j2")
    return template.render(
        repo=result.repo,
        generated_at=format_timestamp(result.generated_at),
        since=format_timestamp(result.since),
        entries=result.entries,
        max_files=max_files,
        max_hits=max_hits,
    )


def write_digest(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
