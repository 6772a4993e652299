import copy
import json

import pytest

from story_adventure.schemas.story import Story
from story_adventure.services.ai_validator import validate_ai_story_update


@pytest.fixture
def original(forest_document):
    forest_document["state"] = {"current_section": "2", "history": ["1"], "variables": {"name": "Ada"}}
    forest_document["meta"]["characters"] = {"Ada": "The hero"}
    return Story.from_json_dict(forest_document)


@pytest.fixture
def response(original):
    """
    A well-formed extension of section 4 as a model would return it.
    """
    sections = copy.deepcopy(original.to_json_dict()["sections"])
    sections["4"]["next"].append({"text": "Follow the bank", "next": "4_ext_1"})
    sections["4_ext_1"] = {
        "id": "4_ext_1",
        "text_lines": ["# The Bank", "", "Reeds sway."],
        "ai_gen": {"prompt": "river bank at dusk"},
        "next": [{"text": "Return", "next": "5"}],
    }
    return {"sections": sections, "meta": {"characters": {"Ferryman": "Silent and old"}}}


def validate(original, document, section_id="4"):
    return validate_ai_story_update(original, json.dumps(document), section_id)


def test_valid_extension(original, response):
    result = validate(original, response)
    assert result.valid, result.error
    assert result.error is None
    story = result.story
    assert "4_ext_1" in story.sections
    assert [choice.target for choice in story.sections["4"].choices] == ["5", "4_ext_1"]
    assert story.state.current_section == "2"
    assert story.state.variables == {"name": "Ada"}
    assert story.meta.title == "The Dark Forest"
    assert story.meta.characters == {"Ada": "The hero", "Ferryman": "Silent and old"}
    assert story.variables["name"].description == "Hero name"


def test_original_story_is_not_modified(original, response):
    before = original.to_json_dict()
    validate(original, response)
    response["sections"].pop("3")
    validate(original, response)
    assert original.to_json_dict() == before


def test_code_fenced_response(original, response):
    text = "```json\n" + json.dumps(response, indent=2) + "\n```"
    assert validate_ai_story_update(original, text, "4").valid


def test_response_state_is_ignored(original, response):
    response["state"] = {"current_section": "4_ext_1", "variables": {"name": "Mallory"}}
    result = validate(original, response)
    assert result.valid
    assert result.story.state.current_section == "2"
    assert result.story.variable_values == {"name": "Ada"}


def test_numeric_choice_targets_match_string_targets(original, response):
    response["sections"]["1"]["next"][0]["next"] = 2
    assert validate(original, response).valid


@pytest.mark.parametrize("text, error", [
    ("Sure! Here is the story: {", "Failed to parse JSON from LLM response"),
    ("[1, 2]", "LLM response is not a valid JSON object"),
    ('{"meta": {}}', "Response is missing sections object"),
    ('{"sections": []}', "Response is missing sections object"),
    ("", "Failed to parse JSON from LLM response"),
])
def test_malformed_responses(original, text, error):
    result = validate_ai_story_update(original, text, "4")
    assert not result.valid
    assert result.story is None
    assert result.error.startswith(error)


def test_deleted_section(original, response):
    del response["sections"]["3"]
    result = validate(original, response)
    assert result.error == "Section 3 was deleted"


def test_deletion_is_reported_before_other_problems(original, response):
    del response["sections"]["3"]
    response["sections"]["1"]["text_lines"] = ["rewritten"]
    response["sections"]["4"]["next"].append({"text": "Nowhere", "next": "nowhere"})
    assert validate(original, response).error == "Section 3 was deleted"


@pytest.mark.parametrize("section_id, field, value", [
    ("1", "text_lines", ["# The Edge", "", "You stand at the edge of a dark forest."]),
    ("2", "text", "Two paths."),
    ("2", "media", {"type": "image", "src": "other.png"}),
    ("3", "script", [{"action": "SET", "parameters": ["x", "1"]}]),
    ("3", "id", "three"),
])
def test_modified_section_fields(original, response, section_id, field, value):
    response["sections"][section_id][field] = value
    result = validate(original, response)
    assert result.error == f"Section {section_id} was modified ({field} changed)"


def test_removed_text_field_counts_as_modification(original, response):
    del response["sections"]["3"]["text"]
    assert validate(original, response).error == "Section 3 was modified (text changed)"


def test_removed_choice(original, response):
    response["sections"]["2"]["next"].pop()
    assert validate(original, response).error == "Section 2 was modified (choices removed)"


def test_reordered_choices(original, response):
    response["sections"]["2"]["next"].reverse()
    assert validate(original, response).error == "Section 2 was modified (choice 0 changed)"


def test_choice_label_changed(original, response):
    response["sections"]["3"]["next"][0]["text"] = "Walk on"
    assert validate(original, response).error == "Section 3 was modified (choice 0 changed)"


def test_choices_appended_to_other_sections_are_allowed(original, response):
    response["sections"]["3"]["next"].append({"text": "Jump in", "next": "4_ext_1"})
    assert validate(original, response).valid


def test_extended_section_must_gain_a_choice(original, response):
    response["sections"]["3"]["next"].append({"text": "Jump in", "next": "4_ext_1"})
    response["sections"]["4"]["next"].pop()
    assert validate(original, response).error == "Section 4 was not extended with new choices"


def test_unknown_extended_section(original, response):
    assert validate(original, response, "99").error == "Extended section 99 not found"


def test_dangling_choice(original, response):
    response["sections"]["4_ext_1"]["next"].append({"text": "Swim on", "next": "4_ext_9"})
    result = validate(original, response)
    assert result.error == "Section 4_ext_1 has choice pointing to non-existent section 4_ext_9"


def test_malformed_choice(original, response):
    response["sections"]["4_ext_1"]["next"].append({"text": "Broken"})
    assert not validate(original, response).valid


def test_new_section_needs_matching_id(original, response):
    response["sections"]["4_ext_1"]["id"] = "4_ext_2"
    result = validate(original, response)
    assert not result.valid
    assert "mismatched or missing id" in result.error


def test_new_section_needs_text(original, response):
    del response["sections"]["4_ext_1"]["text_lines"]
    result = validate(original, response)
    assert result.error == "Section 4_ext_1 is missing both text and text_lines"


def test_new_section_without_ai_gen_is_accepted(original, response):
    del response["sections"]["4_ext_1"]["ai_gen"]
    assert validate(original, response).valid


def test_new_section_with_bad_media_is_rejected(original, response):
    response["sections"]["4_ext_1"]["media"] = {"type": "hologram", "src": "x"}
    result = validate(original, response)
    assert not result.valid
    assert result.error.startswith("Response does not match the story format")


def test_minimal_pure_extension():
    original = Story.from_json_dict({"sections": {"1": {"id": "1", "text": "A", "next": []}}})
    response = {
        "sections": {
            "1": {"id": "1", "text": "A", "next": [{"text": "go", "next": "2"}]},
            "2": {"id": "2", "text": "B"},
        }
    }
    result = validate(original, response, "1")
    assert result.valid, result.error
    assert result.story.to_json_dict() == response


def test_deeply_nested_response_is_rejected(original):
    result = validate_ai_story_update(original, "[" * 100000 + "]" * 100000, "4")
    assert not result.valid
    assert result.error.startswith("Failed to parse JSON from LLM response")


def test_deeply_nested_value_in_new_section_is_rejected(original, response):
    text = json.dumps(response)
    marker = '"id": "4_ext_1", '
    deep_value = '"lore": ' + "[" * 100000 + "]" * 100000 + ", "
    text = text.replace(marker, marker + deep_value, 1)
    assert deep_value in text
    result = validate_ai_story_update(original, text, "4")
    assert not result.valid
    assert result.error.startswith("Failed to parse JSON from LLM response")
