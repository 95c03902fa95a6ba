############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# aura_check.py: "Aura points" vibe scoring tool
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Aura Check: score an action in aura points."""

import re
from typing import Any, Dict, Optional, Tuple

from backend.app.services.tool_handler import ToolContext, ToolHandlerOptions, ToolResult

SLUG = "aura-check"
MAX_LENGTH = 500

PROMPT = """You are 'Aura Check', a mystical vibe calculator for Gen Z.

Task: Analyze the user's action and calculate their "Aura Points" (Social Credit/Coolness Score).

Format:
1. First line: The Score (e.g., "+5000 Aura", "-200 Aura", "Infinite Aura").
2. Second part: A brief, mystical, or funny explanation of why.

Tone: Ethereal, Gen Z slang (but make it sound ancient/mystical), slightly judgmental but funny.

Scoring Guide:
- Cool/Confident/Kind = Positive Aura (+)
- Cringe/Embarrassing/Mean = Negative Aura (-)
- Extremely cool = Infinite Aura"""


def validate(value: Any) -> Tuple[bool, Optional[str]]:
    if not isinstance(value, str):
        return False, "Input must be a string"
    trimmed = value.strip()
    if len(trimmed) < 3:
        return False, "The universe needs more context."
    if len(trimmed) > MAX_LENGTH:
        return False, f"Input too long (max {MAX_LENGTH} characters)"
    return True, None


def split_score(text: str) -> Dict[str, str]:
    """First line is the score, the rest the explanation."""
    head, sep, body = text.partition("\n")
    if not sep:
        return {"score": "??? Aura", "body": text, "fullText": text}
    score = re.sub(r"\*\*|#", "", head).strip()
    return {"score": score, "body": body.strip(), "fullText": text}


async def process(value: str, context: ToolContext) -> ToolResult:
    dispatch = await context.chat(
        [
            {"role": "system", "content": PROMPT},
            {"role": "user", "content": value.strip()},
        ]
    )
    return ToolResult.from_dispatch(split_score(dispatch.content), dispatch)


OPTIONS = ToolHandlerOptions(tool_slug=SLUG, processor=process, validate_input=validate)
