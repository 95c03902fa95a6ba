############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# dream_interpreter.py: Dream interpretation tool
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Dream Stream: interpret a dream in one of three styles."""

from typing import Any, Optional, Tuple

from backend.app.core.providers import ChatOptions
from backend.app.services.tool_handler import ToolContext, ToolHandlerOptions, ToolResult

SLUG = "dream-interpreter"

STYLES = {
    "mystical": "Mystical, spiritual, astrology-vibe. Focus on omens, future predictions, and cosmic energy.",
    "psych": "Psychological, Freudian, Jungian. Focus on subconscious desires, repressed fears, and childhood trauma (but keep it light).",
    "unhinged": "Unhinged, Gen Z meme style. Treat the dream as a chaotic brainrot episode. Use slang like 'fever dream', 'core core'.",
}
DEFAULT_MODE = "unhinged"
MAX_DREAM_LENGTH = 1000

PROMPT = """You are 'Dream Stream', a dream interpreter.

Task: Interpret the user's dream based on the selected style: {mode}.
Style Guide: {style}

Output Format:
1. **The Meaning**: A paragraph interpreting the dream.
2. **The Vibe**: A 1-sentence summary of the dream's energy.

Keep it entertaining, roughly 100-150 words. Do NOT be overly medical or serious."""


def validate(value: Any) -> Tuple[bool, Optional[str]]:
    if not isinstance(value, dict):
        return False, "Invalid input format"
    dream = value.get("dream")
    if not isinstance(dream, str) or not dream.strip():
        return False, "Dream description is required"
    if len(dream.strip()) < 5:
        return False, "The dream is too foggy. Describe more details."
    if len(dream.strip()) > MAX_DREAM_LENGTH:
        return False, f"Dream too long (max {MAX_DREAM_LENGTH} characters)"
    mode = value.get("mode")
    if mode and mode not in STYLES:
        return False, "Invalid interpretation mode"
    return True, None


async def process(value: dict, context: ToolContext) -> ToolResult:
    mode = value.get("mode") or DEFAULT_MODE
    dispatch = await context.chat(
        [
            {"role": "system", "content": PROMPT.format(mode=mode, style=STYLES[mode])},
            {"role": "user", "content": value["dream"].strip()},
        ],
        ChatOptions(temperature=0.9, max_tokens=2000),
    )
    return ToolResult.from_dispatch(dispatch.content, dispatch, mode=mode)


OPTIONS = ToolHandlerOptions(tool_slug=SLUG, processor=process, validate_input=validate)
