import json

from story_adventure.schemas.story import Story
from story_adventure.services.ai_validator import validate_ai_story_update
from story_adventure.services.prompt_builder import (
    SYSTEM_PROMPT,
    build_prompt_messages,
    find_extendable_section,
    find_reachable_sections,
    restore_embedded_media,
    strip_embedded_media,
)

DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"


def test_find_reachable_sections(forest_story):
    assert find_reachable_sections(forest_story, "2", 1) == ["2", "3", "4"]
    assert find_reachable_sections(forest_story, "1", 0) == ["1"]
    assert find_reachable_sections(forest_story, "99", 3) == []


def test_find_extendable_section_within_look_ahead(forest_story):
    assert find_extendable_section(forest_story, "1", look_ahead=2) == "4"
    assert find_extendable_section(forest_story, "1", look_ahead=1) is None
    assert find_extendable_section(forest_story, "1", look_ahead=2, exclude=["4"]) is None


def test_find_extendable_section_uses_story_look_ahead(forest_document):
    forest_document["meta"]["ai_gen_look_ahead"] = 1
    story = Story.from_json_dict(forest_document)
    assert find_extendable_section(story, "1") is None
    assert find_extendable_section(story, "2") == "4"


def test_strip_and_restore_embedded_media(forest_document):
    forest_document["sections"]["2"]["media"]["src"] = DATA_URL
    sections = forest_document["sections"]
    stripped, placeholders = strip_embedded_media(sections)

    assert stripped["2"]["media"]["src"] == "embedded-media://1"
    assert stripped["4"]["media"]["src"] == "river.mp4"
    assert sections["2"]["media"]["src"] == DATA_URL
    assert placeholders == {"embedded-media://1": DATA_URL}

    restored = json.loads(restore_embedded_media(json.dumps(stripped), placeholders))
    assert restored == sections


def test_build_prompt_messages(forest_document):
    forest_document["sections"]["2"]["media"]["src"] = DATA_URL
    forest_document["state"] = {"current_section": "2", "history": ["1"]}
    story = Story.from_json_dict(forest_document)

    messages, placeholders = build_prompt_messages(story, "4", look_ahead=2)

    assert [message["role"] for message in messages] == ["system", "user"]
    assert messages[0]["content"] == SYSTEM_PROMPT
    user_prompt = messages[1]["content"]
    assert 'Extend the story from section "4"' in user_prompt
    assert "The Dark Forest" in user_prompt
    assert "embedded-media://1" in user_prompt
    assert DATA_URL not in user_prompt
    assert "minimum length: 8 sections" in user_prompt
    assert list(placeholders.values()) == [DATA_URL]


def test_echoed_placeholders_validate_against_live_story(forest_document):
    forest_document["sections"]["2"]["media"]["src"] = DATA_URL
    story = Story.from_json_dict(forest_document)
    _, placeholders = build_prompt_messages(story, "4")

    sections, _ = strip_embedded_media(story.to_json_dict()["sections"])
    sections["4"]["next"].append({"text": "Dive", "next": "4_ext_1"})
    sections["4_ext_1"] = {"id": "4_ext_1", "text": "Cold water.", "next": []}
    raw = json.dumps({"sections": sections})

    result = validate_ai_story_update(story, restore_embedded_media(raw, placeholders), "4")
    assert result.valid, result.error
    assert result.story.sections["2"].media.src == DATA_URL
