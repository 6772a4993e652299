import json
import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Tuple

from story_adventure.core.config import settings
from story_adventure.schemas.story import Story

logger = logging.getLogger(__name__)

EMBEDDED_MEDIA_SCHEME = "embedded-media://"

SYSTEM_PROMPT = """
You are a creative writer extending an interactive branching story adventure.

## Story Structure
The story is a directed graph of sections. Each section has:
- a unique "id" equal to its key in "sections"
- text content in "text_lines" (a list of Markdown lines) or "text"
- optional "media" ({"type": "image" | "video", "src": "..."})
- "next": the choices leading to other sections, each {"text": "label", "next": "target id"}
- optional "script" actions and an optional "ai_gen" object with a visual description

## Your Task
You receive the story metadata, every existing section and the id of the section to extend.
Answer with the complete story "sections" object, extended:
- every existing section, byte for byte as you received it, including its id, text, text_lines, media and script
- existing choices stay in place and in order; new choices are only appended at the end of a "next" list
- the section to extend gets at least one new choice
- new sections use new unique ids such as "<id>_ext_1", "<id>_ext_2"
- every choice target is an existing section or one of your new sections

## Critical Rules
1. Respond with ONLY a JSON object of the form {"sections": {...}, "meta": {"characters": {...}}}.
   No explanations and no markdown code fences.
2. Never delete or rename a section and never edit existing text, media or scripts.
3. Give each new section text and, ideally, an "ai_gen": {"prompt": "visual description"}.
4. Match the style, tone and language of the existing story and keep characters consistent.
   Add profiles for new characters to meta.characters.
5. Create meaningful choices (usually 2-3 per branch point). Branches may merge back into existing sections.

## Example
Extending section "5" of a story whose section "5" has one choice to "6":
{
  "sections": {
    "5": {"id": "5", "text_lines": ["You stand at a crossroads."],
          "next": [{"text": "Go left", "next": "6"}, {"text": "Enter the library", "next": "5_ext_1"}]},
    "6": {"id": "6", "text": "The left road ends at the sea.", "next": []},
    "5_ext_1": {"id": "5_ext_1", "text_lines": ["# A New Discovery", "", "Dusty books line the walls."],
                "ai_gen": {"prompt": "Ancient library interior, candlelight, gothic architecture"},
                "next": [{"text": "Leave quickly", "next": "6"}]}
  },
  "meta": {"characters": {"Librarian": "Elderly keeper of the library, speaks in riddles"}}
}
""".strip()


def find_reachable_sections(story: Story, start_section_id, max_depth: int) -> List[str]:
    """
    Breadth-first search over choices. Returns the ids of the sections
    reachable from the start within max_depth steps, nearest first.
    """
    reachable: List[str] = []
    visited = set()
    queue = deque([(str(start_section_id), 0)])
    while queue:
        section_id, depth = queue.popleft()
        if section_id in visited or depth > max_depth:
            continue
        visited.add(section_id)
        section = story.get_section(section_id)
        if section is None:
            continue
        reachable.append(section_id)
        for choice in section.choices:
            if choice.target not in visited:
                queue.append((choice.target, depth + 1))
    return reachable


def find_extendable_section(
    story: Story,
    from_section_id,
    look_ahead: Optional[int] = None,
    exclude: Iterable[str] = (),
) -> Optional[str]:
    """
    Finds the nearest section marked ai_extendable within look-ahead range of
    the player's position, skipping sections in `exclude`.
    """
    if look_ahead is None:
        look_ahead = story.look_ahead or settings.AI_GEN_LOOK_AHEAD
    excluded = set(exclude)
    for section_id in find_reachable_sections(story, from_section_id, look_ahead):
        section = story.sections[section_id]
        if section.ai_extendable and section_id not in excluded:
            return section_id
    return None


def strip_embedded_media(sections: Dict[str, dict]) -> Tuple[Dict[str, dict], Dict[str, str]]:
    """
    Replaces embedded data: URLs in section media with short placeholder URIs.

    :param sections: Sections in their JSON document form. Not modified.
    :return: The stripped copy and a map from placeholder to original source.
    """
    stripped = json.loads(json.dumps(sections))
    placeholders: Dict[str, str] = {}
    for section in stripped.values():
        media = section.get("media") if isinstance(section, dict) else None
        if isinstance(media, dict) and isinstance(media.get("src"), str) and media["src"].startswith("data:"):
            token = f"{EMBEDDED_MEDIA_SCHEME}{len(placeholders) + 1}"
            placeholders[token] = media["src"]
            media["src"] = token
    return stripped, placeholders


def restore_embedded_media(response_text: str, placeholders: Dict[str, str]) -> str:
    """
    Puts the original data: URLs back in place of their placeholders in a raw
    model response, so the response can be compared with the live story.
    """
    for token, src in placeholders.items():
        response_text = response_text.replace(json.dumps(token), json.dumps(src))
    return response_text


def build_user_prompt(story: Story, extend_from_section_id: str, look_ahead: int, sections: Dict[str, dict]) -> str:
    history = story.state.history if story.state and story.state.history else []
    relevant_ids = [section_id for section_id in history if section_id in story.sections]
    for section_id in find_reachable_sections(story, extend_from_section_id, look_ahead):
        if section_id not in relevant_ids:
            relevant_ids.append(section_id)
    logger.info(f"[AI Prompt] Relevant sections: {relevant_ids}")

    if story.meta is not None:
        story_meta = story.meta.model_dump(mode="json", include={"title", "author", "characters"}, exclude_none=True)
        story_meta.setdefault("characters", {})
    else:
        story_meta = {"title": "Untitled Story", "characters": {}}

    return f"""
Extend the story from section "{extend_from_section_id}".

## Story Context

Story metadata and existing character profiles:
{json.dumps({"meta": story_meta}, ensure_ascii=False, indent=2)}

Sections the player visited and sections near "{extend_from_section_id}" (focus your writing on these):
{", ".join(relevant_ids)}

All existing sections (return every one of them unchanged):
{json.dumps(sections, ensure_ascii=False, indent=2)}

## Your Task

1. Return every existing section exactly as given, including section "{extend_from_section_id}"
2. Append new choices to the "next" list of section "{extend_from_section_id}"
3. Create new sections with unique ids ("{extend_from_section_id}_ext_1", "{extend_from_section_id}_ext_2", ...)
4. Generate at least one complete story path of minimum length: {4 * look_ahead} sections
5. Every choice target must be an existing section id or one of your new sections

Respond with ONLY the JSON object.
""".strip()


def build_prompt_messages(
    story: Story,
    extend_from_section_id,
    look_ahead: Optional[int] = None,
) -> Tuple[List[Dict[str, str]], Dict[str, str]]:
    """
    Constructs the chat messages asking the model to extend a section.

    :return: The messages and the embedded media placeholders to restore in the response.
    """
    if look_ahead is None:
        look_ahead = story.look_ahead or settings.AI_GEN_LOOK_AHEAD
    sections, placeholders = strip_embedded_media(story.to_json_dict()["sections"])
    user_prompt = build_user_prompt(story, str(extend_from_section_id), look_ahead, sections)
    logger.debug(f"[AI Prompt] User prompt: {user_prompt}")
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]
    return messages, placeholders
