"""Render a transcript artifact as a Markdown document."""

import re
from typing import List

import yaml

from ..models.transcription import TranscriptArtifact

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def format_time(seconds: float) -> str:
    """Format seconds as mm:ss (minutes are not wrapped at an hour)."""
    seconds = max(0.0, seconds or 0.0)
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins:02d}:{secs:02d}"


def sanitize_filename(name: str, max_length: int = 100) -> str:
    """Strip characters that are invalid in filenames; CJK text is preserved."""
    cleaned = _INVALID_FILENAME_CHARS.sub('', name or '')
    cleaned = re.sub(r'\s+', '_', cleaned.strip())[:max_length]
    return cleaned or "transcript"


def generate_markdown(artifact: TranscriptArtifact) -> str:
    """Render the artifact; output depends only on the artifact's fields."""
    duration_str = format_time(artifact.duration_seconds)

    front_matter = yaml.safe_dump(
        {
            "title": artifact.title,
            "source": artifact.source_url,
            "duration": duration_str,
            "transcribed_at": artifact.generated_at.isoformat(),
            "language": artifact.language,
            "model": artifact.model,
        },
        allow_unicode=True,
        sort_keys=False,
        default_flow_style=False,
        width=10_000,
    )

    full_text = ''.join(seg.text.strip() for seg in artifact.segments)

    lines: List[str] = [
        "---",
        front_matter.rstrip("\n"),
        "---",
        "",
        f"# {artifact.title}",
        "",
        "## Full Text",
        "",
        full_text,
        "",
        "## Timestamped Segments",
        "",
    ]

    for seg in artifact.segments:
        start = format_time(seg.start)
        end = format_time(seg.end) if seg.end is not None else duration_str
        lines.append(f"**[{start} - {end}]** {seg.text.strip()}")
        lines.append("")

    return "\n".join(lines)
