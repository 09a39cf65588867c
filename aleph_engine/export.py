"""Markdown transcript export for sharing a session."""

from __future__ import annotations

from collections.abc import Sequence

from aleph_engine.models import Sender, StorySegment

TITLE = "THE ALEPH: INFINITE BORGES"
ANTAGONIST_NAME = "CARLOS ARGENTINO DANERI"
FOOTER = "---\nPlay the game: [Game Link]"


def _segment_block(seg: StorySegment) -> str:
    stamp = f"\n*{seg.timestamp}*" if seg.timestamp else ""
    if seg.sender in (Sender.NARRATOR, Sender.PLAYER):
        # greentext: exactly one marker per line
        body = "\n".join(f"> {line.removeprefix('>')}" for line in seg.lines)
        return f"{stamp}\n{body}\n\n"
    if seg.sender == Sender.ANTAGONIST:
        return f'{stamp}\n**{ANTAGONIST_NAME}**:\n"{" ".join(seg.lines)}"\n\n'
    return f"{stamp}\n**[SYSTEM]**: {' '.join(seg.lines)}\n\n"


def export_transcript(
    transcript: Sequence[StorySegment], obsession: int, upto: int | None = None
) -> str:
    """Render the transcript up to and including index `upto` as markdown.

    `upto=None` exports everything. Output depends only on the arguments.
    """
    segments = transcript if upto is None else transcript[:upto + 1]
    parts = [f"# {TITLE}\n\n", f"*Current Obsession: {obsession}%*\n\n---\n\n"]
    parts.extend(_segment_block(seg) for seg in segments)
    parts.append(FOOTER)
    return "".join(parts)
