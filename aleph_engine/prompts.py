"""Handlebars prompt rendering for the narrative generator."""

from collections.abc import Callable
from typing import Any

import pybars

from aleph_engine.ledger import is_completed
from aleph_engine.models import Objective, Sentiment
from aleph_engine.scenes import Scene, time_rule
from aleph_engine.story import VOW

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

SYSTEM_RULES = """\
You are the Game Master for "The Aleph: Infinite Borges".
The protagonist is Jorge Luis Borges (fictionalized).
The tone is a mix of High Literary Modernism and 4chan Greentext.

VISUALS:
- When a new location is entered, a significant object appears, or the atmosphere
  changes drastically, include an "imagePrompt" in the narrative item.
- Image prompts describe a noir, 1920s Buenos Aires, surrealist, grainy, black and
  white aesthetic.
- Include a "musicPrompt" when the ambient sound of the place changes.

TIME DILATION (HIDDEN FROM PLAYER):
- Show, don't tell. Never explain that time slows down or speeds up.
- Obsessive, devoted choices cause time jumps; the years fly by.
- Passive or mundane choices cause stagnation: seconds, minutes, hours.

GAMEPLAY:
- Obsession (sanity) ranges 0 to 100. Report its change as statUpdates.sanityChange
  (-20 to +20). Obsession 0 is Game Over (boredom, oblivion).
- Report a completed birthday visit as statUpdates.visitCountChange = 1.
- List objective ids completed this turn in completedObjectiveIds.
- Add objectives in newObjectives only when the story genuinely branches.
- Do not railroad. A player who refuses to progress rots in the present.

VOICES:
- BORGES: internal monologue. Cynical, weary, greentext.
- CARLOS: pompous, rhyming, all-caps emphasis, verbose.
- SYSTEM: cold, objective, tracking the timeline.

OUTPUT: a single JSON object, no other text:
{"narrative": [{"sender": "BORGES"|"CARLOS"|"SYSTEM", "lines": ["..."],
  "timestamp": "Month Day, Year, Time", "imagePrompt"?: "...", "musicPrompt"?: "...",
  "tone"?: "..."}],
 "choices": [{"id": "...", "text": "...",
  "sentiment": "passive"|"aggressive"|"intellectual"|"obsessive"}],
 "statUpdates": {"sanityChange": 0, "visitCountChange": 0},
 "completedObjectiveIds": [], "newObjectives": [], "gameOver": false}
Every narrative item must carry a timestamp.
"""

TURN_TEMPLATE = """\
SCENE: {{{scene.title}}}
{{{scene.context}}}
{{#if scene.permitted}}
DO:
{{#each scene.permitted}}- {{{this}}}
{{/each}}{{/if}}{{#if scene.forbidden}}
FORBIDDEN:
{{#each scene.forbidden}}- {{{this}}}
{{/each}}{{/if}}
Current Obsession Level: {{obsession}}/100
Birthday visits so far: {{visit_count}}
Vow Taken: {{#if vow_taken}}YES{{else}}NO{{/if}}

CURRENT CHECKPOINTS:
{{#each open_objectives}}[ID: {{{id}}}] {{{label}}}: {{{description}}}
{{/each}}
Game History:
{{#each history}}{{{this}}}
{{/each}}
Player Action: {{{action}}}
TIME RULE: {{{time_rule}}}

Write every line of narrative and every choice in {{{language}}}.
Generate the next narrative segment. Return JSON.
"""


def build_context(
    *,
    scene: Scene,
    history: list[str],
    action: str,
    sentiment: Sentiment | None,
    obsession: int,
    visit_count: int,
    objectives: list[Objective],
    language: str,
) -> dict[str, Any]:
    """Assemble template variables for TURN_TEMPLATE."""
    return {
        "scene": {
            "title": scene.title,
            "context": scene.context,
            "permitted": list(scene.permitted),
            "forbidden": list(scene.forbidden),
        },
        "history": history,
        "action": action,
        "time_rule": time_rule(sentiment),
        "obsession": obsession,
        "visit_count": visit_count,
        "vow_taken": is_completed(objectives, VOW),
        "open_objectives": [
            {"id": o.id, "label": o.label, "description": o.description}
            for o in objectives if not o.completed
        ],
        "language": language,
    }
