"""
Hashtags derived from the AI's flags and cues in the source text, and
assembly of the event description ("#Tag #Tag\n\n<raw text>").
"""

import re
from typing import List, Optional

FREE_FOOD_TAG = "#Free Food"
REGISTRATION_NEEDED_TAG = "#Registration Needed"
REGISTRATION_UNKNOWN_TAG = "#Registration Not Mentioned"

FREE_FOOD_PATTERN = re.compile(
    r"\bfree\s+(?:food|lunch|dinner|breakfast|snacks?|pizza|refreshments|drinks)\b",
    re.IGNORECASE,
)
NO_REGISTRATION_PATTERN = re.compile(
    r"\b(?:no\s+registration|registration\s+not\s+required|no\s+rsvp|walk[\s-]*ins?\s+welcome)\b",
    re.IGNORECASE,
)
REGISTRATION_PATTERN = re.compile(
    r"\b(?:register|registration|rsvp|sign[\s-]*up|tickets?\s+required)\b",
    re.IGNORECASE,
)

# leading "#A #B\n\n" block on an existing description
_TAG_BLOCK = re.compile(r"^(#[^\n]+(?:\s+#[^\n]+)*\n\n)")


def has_free_food(raw_text: Optional[str], ai_flag: Optional[bool]) -> bool:
    return ai_flag is True or bool(raw_text and FREE_FOOD_PATTERN.search(raw_text))


def registration_needed(raw_text: Optional[str], ai_flag: Optional[bool]) -> Optional[bool]:
    """True / False when known, None when registration isn't mentioned."""
    if ai_flag is not None:
        return ai_flag
    if not raw_text:
        return None
    if NO_REGISTRATION_PATTERN.search(raw_text):
        return False
    if REGISTRATION_PATTERN.search(raw_text):
        return True
    return None


def compute_tags(raw_text: Optional[str], free_food_flag: Optional[bool] = None,
                 registration_flag: Optional[bool] = None) -> List[str]:
    tags = []
    if has_free_food(raw_text, free_food_flag):
        tags.append(FREE_FOOD_TAG)

    needed = registration_needed(raw_text, registration_flag)
    if needed is True:
        tags.append(REGISTRATION_NEEDED_TAG)
    elif needed is None:
        tags.append(REGISTRATION_UNKNOWN_TAG)
    return tags


def strip_tags(description: Optional[str]) -> str:
    return _TAG_BLOCK.sub("", description or "")


def build_description(tags: List[str], raw_text: Optional[str], ai_description: Optional[str]) -> Optional[str]:
    """
    Hashtags first, then the raw text. The AI description is used instead when
    it already contains the raw text (or there is no raw text), so the raw
    text never appears twice.
    """
    ai_body = strip_tags(ai_description).strip()
    raw = (raw_text or "").strip()

    if raw and ai_body and raw in ai_body:
        body = ai_body
    else:
        body = raw or ai_body

    if tags:
        header = " ".join(tags)
        return f"{header}\n\n{body}" if body else header
    return body or None
