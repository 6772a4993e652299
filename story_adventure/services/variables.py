import re
from typing import Mapping, Optional

from story_adventure.schemas.story import Section


def interpolate(text: Optional[str], variables: Optional[Mapping[str, str]]) -> str:
    """
    Replaces every occurrence of ${name} in text with the value of that variable.

    Placeholders naming unknown variables are left as they are. The text is
    scanned once, so substituted values are never expanded themselves.
    """
    if not variables or not text:
        return text or ""
    values = {"${" + key + "}": value for key, value in variables.items() if value is not None}
    if not values:
        return text
    pattern = re.compile("|".join(re.escape(token) for token in sorted(values, key=len, reverse=True)))
    return pattern.sub(lambda match: values[match.group(0)], text)


def section_text(section: Optional[Section], variables: Optional[Mapping[str, str]]) -> str:
    """
    Returns the section's text with variables substituted.

    text_lines wins over text when both are present, even when it is empty.
    """
    if section is None:
        return ""
    if section.text_lines is not None:
        text = "\n".join(section.text_lines)
    else:
        text = section.text or ""
    return interpolate(text, variables)
