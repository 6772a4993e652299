import json
import re
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from story_adventure.core.errors import GraphIntegrityError, StoryFormatError

DEFAULT_FILE_TITLE = "story_adventure"


def _as_text(value: Any) -> Any:
    """
    Coerces JSON scalars to the string form the story format stores them in.
    """
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


class ActionType(str, Enum):
    NONE = "NONE"
    INPUT = "INPUT"
    SET = "SET"
    ADD_TO_VARIABLE = "ADD_TO_VARIABLE"
    COMPARE_DO = "COMPARE_DO"
    IF_SET_DO = "IF_SET_DO"
    IF_NOT_SET_DO = "IF_NOT_SET_DO"
    ADD_CHOICE = "ADD_CHOICE"
    REMOVE_CHOICE = "REMOVE_CHOICE"
    IF_SET_ADD_CHOICE = "IF_SET_ADD_CHOICE"
    IF_SET_REMOVE_CHOICE = "IF_SET_REMOVE_CHOICE"


class StoryModel(BaseModel):
    # Unknown keys survive a load/save round trip
    model_config = ConfigDict(extra="allow")


# --- Graph Models ---

class Media(StoryModel):
    type: Literal["image", "video"]
    src: str


class AiGenImage(StoryModel):
    prompt: str
    negative_prompt: Optional[str] = None
    size: Optional[str] = None


class Choice(StoryModel):
    text: str = ""
    next: Union[str, int]

    @property
    def target(self) -> str:
        """
        The target section id. A numeric 2 and a string "2" name the same section.
        """
        return str(self.next)


class Action(StoryModel):
    action: str
    parameters: List[str] = Field(default_factory=list)

    @field_validator("parameters", mode="before")
    @classmethod
    def stringify_parameters(cls, value):
        if value is None:
            return []
        if isinstance(value, list):
            return ["" if item is None else _as_text(item) for item in value]
        return value


class Section(StoryModel):
    id: str
    text_lines: Optional[List[str]] = None
    text: Optional[str] = None
    media: Optional[Media] = None
    next: Optional[List[Choice]] = None
    script: Optional[List[Action]] = None
    ai_extendable: Optional[bool] = None
    ai_gen: Optional[AiGenImage] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        return _as_text(value)

    @property
    def choices(self) -> List[Choice]:
        return self.next or []

    def has_text(self) -> bool:
        return self.text_lines is not None or bool(self.text)


# --- Meta & State Models ---

class Author(StoryModel):
    name: str
    url: Optional[str] = None


class License(StoryModel):
    name: str
    url: Optional[str] = None


class StoryMeta(StoryModel):
    title: Optional[str] = None
    author: Optional[Union[Author, str]] = None
    year: Optional[Union[str, int]] = None
    license: Optional[Union[License, str]] = None
    ai_gen_look_ahead: Optional[int] = None
    characters: Optional[Dict[str, str]] = None


class VariableDefinition(StoryModel):
    default: str = ""
    description: Optional[str] = None

    @field_validator("default", mode="before")
    @classmethod
    def coerce_default(cls, value):
        return _as_text(value)


class StoryState(StoryModel):
    current_section: Optional[str] = None
    variables: Optional[Dict[str, str]] = None
    history: Optional[List[str]] = None

    @field_validator("current_section", mode="before")
    @classmethod
    def coerce_current_section(cls, value):
        return _as_text(value)

    @field_validator("variables", mode="before")
    @classmethod
    def stringify_variables(cls, value):
        if isinstance(value, dict):
            return {key: _as_text(item) for key, item in value.items()}
        return value

    @field_validator("history", mode="before")
    @classmethod
    def stringify_history(cls, value):
        if isinstance(value, list):
            return [_as_text(item) for item in value]
        return value


# --- Root Aggregate ---

class Story(StoryModel):
    meta: Optional[StoryMeta] = None
    state: Optional[StoryState] = None
    sections: Dict[str, Section]
    variables: Optional[Dict[str, VariableDefinition]] = None

    @classmethod
    def new(cls) -> "Story":
        """
        A fresh story holding a single empty section "1".
        """
        return cls(sections={"1": Section(id="1", text_lines=[""])})

    @classmethod
    def from_json_dict(cls, data: Any) -> "Story":
        if not isinstance(data, dict):
            raise StoryFormatError("Story document must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise StoryFormatError(f"Story document does not match the story format: {e}") from e

    @classmethod
    def from_json_text(cls, text: str) -> "Story":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StoryFormatError(f"Story file is not valid JSON: {e}") from e
        return cls.from_json_dict(data)

    def to_json_dict(self) -> dict:
        """
        Serializes the story to its JSON document form.

        Only fields present in the loaded document, or assigned while playing,
        are written, so an unmodified story serializes back to its input.
        """
        return self.model_dump(mode="json", exclude_unset=True)

    def to_json_text(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_json_dict(), ensure_ascii=False, indent=indent)

    def get_section(self, section_id) -> Optional[Section]:
        if section_id is None:
            return None
        return self.sections.get(str(section_id))

    def first_section_id(self) -> Optional[str]:
        return next(iter(self.sections), None)

    def ensure_state(self) -> StoryState:
        """
        Returns the run-time state, creating it on first write.
        """
        if self.state is None:
            self.state = StoryState()
        return self.state

    def ensure_variables(self) -> Dict[str, str]:
        state = self.ensure_state()
        if state.variables is None:
            state.variables = {}
        return state.variables

    @property
    def variable_values(self) -> Dict[str, str]:
        if self.state is None or self.state.variables is None:
            return {}
        return self.state.variables

    @property
    def look_ahead(self) -> Optional[int]:
        if self.meta is None:
            return None
        return self.meta.ai_gen_look_ahead

    def dangling_references(self) -> List[Tuple[str, str]]:
        """
        Lists every (section id, choice target) pair whose target section does not exist.
        """
        dangling = []
        for section_id, section in self.sections.items():
            for choice in section.choices:
                if choice.target not in self.sections:
                    dangling.append((section_id, choice.target))
        return dangling


def assert_graph_integrity(story: Story) -> None:
    """
    Raises GraphIntegrityError when any choice points at a missing section.
    """
    dangling = story.dangling_references()
    if dangling:
        raise GraphIntegrityError(dangling)


def file_safe_title(story: Optional[Story]) -> str:
    """
    Converts the story title to a string usable as a file name.
    """
    if story is None or story.meta is None or not story.meta.title:
        return DEFAULT_FILE_TITLE
    return re.sub(r"[^a-zA-Z0-9_-]", "_", story.meta.title)
