import json

import pytest

from story_adventure.core.errors import GraphIntegrityError, StoryFormatError
from story_adventure.schemas.story import Story, assert_graph_integrity, file_safe_title
from conftest import make_story


def test_round_trip_is_lossless(forest_document):
    story = Story.from_json_dict(forest_document)
    assert story.to_json_dict() == forest_document


def test_unknown_keys_survive_round_trip():
    document = {
        "editor_layout": {"zoom": 2},
        "sections": {"1": {"id": "1", "text": "x", "position": [10, 20], "script": [
            {"action": "TELEPORT", "parameters": ["9"], "note": "custom"},
        ]}},
    }
    assert Story.from_json_dict(document).to_json_dict() == document


def test_from_json_text_reports_bad_json():
    with pytest.raises(StoryFormatError):
        Story.from_json_text("{not json")


@pytest.mark.parametrize("document", [
    [],
    {"meta": {}},
    {"sections": {"1": {"text": "no id"}}},
    {"sections": {"1": {"id": "1", "media": {"type": "audio", "src": "a.mp3"}}}},
])
def test_from_json_dict_rejects_malformed_documents(document):
    with pytest.raises(StoryFormatError):
        Story.from_json_dict(document)


def test_numeric_ids_and_parameters_are_read_as_strings():
    story = Story.from_json_text(json.dumps({
        "state": {"current_section": 2, "history": [1], "variables": {"gold": 5}},
        "sections": {
            "1": {"id": 1, "next": [{"text": "on", "next": 2}], "script": [{"action": "SET", "parameters": ["x", 3]}]},
            "2": {"id": 2},
        },
    }))
    assert story.sections["1"].id == "1"
    assert story.sections["1"].choices[0].target == "2"
    assert story.sections["1"].script[0].parameters == ["x", "3"]
    assert story.state.current_section == "2"
    assert story.state.history == ["1"]
    assert story.variable_values == {"gold": "5"}

    saved = story.to_json_dict()
    assert saved["sections"]["1"]["id"] == "1"
    assert saved["sections"]["1"]["script"][0]["parameters"] == ["x", "3"]


def test_new_story_has_one_empty_section():
    story = Story.new()
    assert list(story.sections) == ["1"]
    assert story.sections["1"].text_lines == [""]
    assert story.state is None


def test_ensure_variables_creates_state_on_first_write():
    story = make_story({"1": {"text": "x"}})
    story.ensure_variables()["a"] = "1"
    assert story.to_json_dict()["state"] == {"variables": {"a": "1"}}


def test_dangling_references():
    story = make_story({
        "1": {"next": [{"text": "a", "next": "2"}, {"text": "b", "next": "9"}]},
        "2": {"next": [{"text": "c", "next": 1}]},
    })
    assert story.dangling_references() == [("1", "9")]
    with pytest.raises(GraphIntegrityError) as exc_info:
        assert_graph_integrity(story)
    assert exc_info.value.dangling == [("1", "9")]


def test_graph_integrity_passes_for_consistent_story(forest_story):
    assert_graph_integrity(forest_story)


@pytest.mark.parametrize("title, expected", [
    ("The Dark Forest", "The_Dark_Forest"),
    ("Ünïcode: yes/no?", "_n_code__yes_no_"),
    ("already-safe_1", "already-safe_1"),
])
def test_file_safe_title(title, expected):
    story = make_story({"1": {}}, meta={"title": title})
    assert file_safe_title(story) == expected


def test_file_safe_title_defaults():
    assert file_safe_title(None) == "story_adventure"
    assert file_safe_title(make_story({"1": {}})) == "story_adventure"
    assert file_safe_title(make_story({"1": {}}, meta={"title": ""})) == "story_adventure"
