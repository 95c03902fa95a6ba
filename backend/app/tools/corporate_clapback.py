############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# corporate_clapback.py: Corporate speak rewriter / decoder tool
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Corporate Clapback: rewrite angry text as corporate email, or decode it."""

from typing import Any, Optional, Tuple

from backend.app.services.tool_handler import ToolContext, ToolHandlerOptions, ToolResult

SLUG = "corporate-clapback"
MODES = ("rage", "decode")

RAGE_PROMPT = """You are 'Corporate Clapback 98', an expert in corporate speak and passive-aggressive email writing.

Task: Rewrite the user's angry/casual input into professional corporate jargon.

Aggression Level Setting ({level}/3):
1 = Polite & Professional (Standard HR safe).
2 = Passive Aggressive (Use words like 'per my last email', 'kindly', 'ensure').
3 = Gaslight / Extreme (Technically professional but heavily condescending and cold. Use complex buzzwords to confuse them).

Rules:
- Maintain a "professional" tone at all times.
- Use buzzwords like: synergy, circle back, bandwidth, deliverables, deep dive, offline.
- Do not add explanations. Just output the email body."""

DECODE_PROMPT = """You are 'Corporate Clapback 98', a translator who decodes corporate jargon into plain truth.

Task: Translate the user's corporate email/message into what they REALLY mean (brutally honest).

Tone: Cynical, funny, direct.
Start the response with "TRANSLATION:\""""


def validate(value: Any) -> Tuple[bool, Optional[str]]:
    if not isinstance(value, dict):
        return False, "Invalid input format"
    text = value.get("text")
    if not isinstance(text, str) or len(text.strip()) < 5:
        return False, "Input is too short. Please utilize the keyboard."
    if value.get("mode") not in MODES:
        return False, "Invalid mode selected."
    level = value.get("aggressionLevel", 2)
    if not isinstance(level, int) or not 1 <= level <= 3:
        return False, "Aggression level must be 1, 2 or 3."
    return True, None


async def process(value: dict, context: ToolContext) -> ToolResult:
    mode = value["mode"]
    level = value.get("aggressionLevel", 2)
    system = RAGE_PROMPT.format(level=level) if mode == "rage" else DECODE_PROMPT

    dispatch = await context.chat(
        [
            {"role": "system", "content": system},
            {"role": "user", "content": value["text"]},
        ]
    )
    return ToolResult.from_dispatch(
        dispatch.content, dispatch, mode=mode, aggressionLevel=level
    )


OPTIONS = ToolHandlerOptions(tool_slug=SLUG, processor=process, validate_input=validate)
