"""
Validation of AI-generated story extensions.

A language model is asked to extend the story from one section. Its answer is
untrusted: it is only adopted when it keeps every existing section exactly as
it was (choices may only be appended), actually adds a choice to the extended
section and leaves no choice pointing at a missing section.
"""
import json
import logging
import re
from typing import Any, List, Optional

from pydantic import BaseModel, ValidationError

from story_adventure.schemas.story import Story

logger = logging.getLogger(__name__)

# Fields of an existing section that the model must echo back unchanged
_FROZEN_SECTION_FIELDS = ("id", "text", "text_lines", "media", "script")

_CODE_FENCE = re.compile(r"^```(?:json)?\s*\n(.*?)\n```$", re.DOTALL)


class ValidationResult(BaseModel):
    valid: bool
    story: Optional[Story] = None
    error: Optional[str] = None


class ExtensionRejected(Exception):
    pass


def _reject(message: str) -> ValidationResult:
    logger.error(f"[Validator] {message}")
    return ValidationResult(valid=False, error=message)


def extract_json(response_text: str) -> Any:
    """
    Parses the JSON document in an LLM response, removing a Markdown code
    fence around it if there is one.

    :raises ExtensionRejected: when the text is not valid JSON.
    """
    logger.info(f"[Validator] Extracting JSON from response (length: {len(response_text)})")
    json_text = response_text.strip()
    match = _CODE_FENCE.match(json_text)
    if match:
        logger.info("[Validator] Removed markdown code fences from response")
        json_text = match.group(1).strip()
    try:
        return json.loads(json_text)
    except (ValueError, RecursionError) as e:
        logger.error(f"[Validator] Failed to parse text (first 500 chars): {json_text[:500]}")
        raise ExtensionRejected(f"Failed to parse JSON from LLM response: {e}") from e


def _json_equal(left: Any, right: Any) -> bool:
    """
    Deep equality of JSON values that does not treat 1, 1.0 and true as equal.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(_json_equal(left[key], right[key]) for key in left)
    if isinstance(left, list):
        return len(left) == len(right) and all(_json_equal(a, b) for a, b in zip(left, right))
    return left == right


def _choice_list(section: dict, section_id: str) -> List[dict]:
    choices = section.get("next")
    if choices is None:
        return []
    if not isinstance(choices, list):
        raise ExtensionRejected(f"Section {section_id} has a malformed next list")
    return choices


def _choice_target(choice: Any, section_id: str) -> str:
    if not isinstance(choice, dict):
        raise ExtensionRejected(f"Section {section_id} has a malformed choice")
    target = choice.get("next")
    if isinstance(target, bool) or not isinstance(target, (str, int)):
        raise ExtensionRejected(f"Section {section_id} has a choice without a valid target")
    return str(target)


def _same_choice(original: dict, candidate: Any, section_id: str) -> bool:
    if not isinstance(candidate, dict):
        return False
    return (
        original.get("text", "") == candidate.get("text", "")
        and _choice_target(original, section_id) == _choice_target(candidate, section_id)
    )


def _check_unchanged(section_id: str, original: dict, candidate: Any) -> None:
    if not isinstance(candidate, dict):
        raise ExtensionRejected(f"Section {section_id} was modified")
    for field in _FROZEN_SECTION_FIELDS:
        if not _json_equal(original.get(field), candidate.get(field)):
            raise ExtensionRejected(f"Section {section_id} was modified ({field} changed)")
    original_choices = _choice_list(original, section_id)
    new_choices = _choice_list(candidate, section_id)
    if len(new_choices) < len(original_choices):
        raise ExtensionRejected(f"Section {section_id} was modified (choices removed)")
    for position, choice in enumerate(original_choices):
        if not _same_choice(choice, new_choices[position], section_id):
            raise ExtensionRejected(f"Section {section_id} was modified (choice {position} changed)")


def _check_graph(sections: dict) -> None:
    for section_id, section in sections.items():
        if not isinstance(section, dict):
            raise ExtensionRejected(f"Section {section_id} is not an object")
        for choice in _choice_list(section, section_id):
            target = _choice_target(choice, section_id)
            if target not in sections:
                raise ExtensionRejected(
                    f"Section {section_id} has choice pointing to non-existent section {target}"
                )


def _check_new_sections(story: Story, original_ids) -> None:
    for section_id, section in story.sections.items():
        if section_id in original_ids:
            continue
        if section.id != section_id:
            raise ExtensionRejected(
                f"Section {section_id} has mismatched or missing id field (expected: {section_id}, got: {section.id})"
            )
        if not section.has_text():
            raise ExtensionRejected(f"Section {section_id} is missing both text and text_lines")
        if section.ai_gen is None or not section.ai_gen.prompt:
            logger.warning(f"[Validator] Section {section_id} is missing ai_gen.prompt")


def _adopt_runtime_fields(original: dict, response: dict) -> dict:
    """
    Builds the extended story document from the response.

    The model never owns play state: the original state is kept, as are the
    original metadata and story-level variable definitions, with any new
    character profiles merged in.
    """
    document = {key: value for key, value in response.items() if key not in ("state", "meta")}
    for key, value in original.items():
        if key not in ("sections", "meta"):
            document[key] = value

    meta = dict(original["meta"]) if isinstance(original.get("meta"), dict) else None
    response_meta = response.get("meta")
    new_characters = response_meta.get("characters") if isinstance(response_meta, dict) else None
    if isinstance(new_characters, dict) and new_characters:
        meta = meta if meta is not None else {}
        meta["characters"] = {**(meta.get("characters") or {}), **new_characters}
        logger.info(f"[Validator] Merged characters: {list(new_characters)}")
    if meta is not None:
        document["meta"] = meta
    return document


def validate_ai_story_update(original: Story, llm_response: str, extended_section_id) -> ValidationResult:
    """
    Validates an AI-generated story extension.

    The checks run in a fixed order and the first failure is reported:
    JSON extraction, response shape, no deleted sections, no modified
    sections, an extension of the requested section, graph integrity and
    finally the story schema.

    :param original: The live story before the extension. It is never modified.
    :param llm_response: The raw text returned by the model.
    :param extended_section_id: The section the model was asked to extend.
    :return: A ValidationResult carrying the extended story when valid.
    """
    extended_section_id = str(extended_section_id)
    logger.info(f"[Validator] Starting validation of extension from section {extended_section_id}")
    try:
        parsed = extract_json(llm_response or "")

        if not isinstance(parsed, dict):
            return _reject("LLM response is not a valid JSON object")
        sections = parsed.get("sections")
        if not isinstance(sections, dict):
            return _reject("Response is missing sections object")

        original_document = original.to_json_dict()
        baseline = original_document["sections"]
        for section_id in baseline:
            if section_id not in sections:
                return _reject(f"Section {section_id} was deleted")

        for section_id, section in baseline.items():
            _check_unchanged(section_id, section, sections[section_id])

        if extended_section_id not in baseline or extended_section_id not in sections:
            return _reject(f"Extended section {extended_section_id} not found")
        original_count = len(_choice_list(baseline[extended_section_id], extended_section_id))
        new_count = len(_choice_list(sections[extended_section_id], extended_section_id))
        if new_count <= original_count:
            return _reject(f"Section {extended_section_id} was not extended with new choices")

        _check_graph(sections)

        try:
            extended = Story.model_validate(_adopt_runtime_fields(original_document, parsed))
        except ValidationError as e:
            return _reject(f"Response does not match the story format: {e}")
        _check_new_sections(extended, baseline.keys())
    except ExtensionRejected as e:
        return _reject(str(e))
    except RecursionError:
        return _reject("Response is nested too deeply")

    new_ids = [section_id for section_id in extended.sections if section_id not in baseline]
    logger.info(f"[Validator] Validation complete: {len(new_ids)} new sections {new_ids}")
    return ValidationResult(valid=True, story=extended)
