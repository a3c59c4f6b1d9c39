"""Pull executable code out of a model's markdown answer."""

import re
from typing import Optional

FENCE = "```"

LANGUAGE_ALIASES: dict[str, tuple[str, ...]] = {
    "python": ("python", "py", "python3"),
}


def _opening_fence(language: str) -> re.Pattern:
    tags = LANGUAGE_ALIASES.get(language.lower(), (language.lower(),))
    alternatives = "|".join(re.escape(tag) for tag in tags)
    # Tag must be the only thing on the fence line so "```pythonic" never matches
    return re.compile(
        rf"^[ \t]*{FENCE}[ \t]*(?:{alternatives})[ \t]*\r?\n",
        re.IGNORECASE | re.MULTILINE,
    )


def extract_code(text: str, language: str = "python") -> Optional[str]:
    """Return the body of the first fenced block tagged with ``language``.

    Untagged fences and fences for other languages are skipped. A block
    with no closing fence is treated as absent, as is a blank block.

    Args:
        text: Raw model output.
        language: Language tag to look for (aliases such as ``py`` are
            accepted for ``python``).

    Returns:
        The code between the fences, or None if there is no usable block.
    """
    if not text:
        return None

    match = _opening_fence(language).search(text)
    if match is None:
        return None

    body_start = match.end()
    body_end = text.find(FENCE, body_start)
    if body_end == -1:
        return None

    body = text[body_start:body_end]
    # Drop the line break (and any indentation) in front of the closing fence
    last_break = body.rfind("\n")
    if last_break != -1 and not body[last_break + 1 :].strip():
        body = body[:last_break]
        if body.endswith("\r"):
            body = body[:-1]

    if not body.strip():
        return None
    return body
