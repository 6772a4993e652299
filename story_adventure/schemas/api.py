from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Union

from story_adventure.schemas.story import Choice, Media, Story

# --- Shared Models ---

class PlayerView(BaseModel):
    section_id: Optional[str]
    text: str
    media: Optional[Media] = None
    choices: List[Choice]
    history: List[str]
    variables: Dict[str, str]
    can_step_forward: bool
    can_step_back: bool

# --- Request Models ---

class StoryCreate(BaseModel):
    key: Optional[str] = None
    story: Optional[Story] = None  # a fresh single-section story when omitted

class Answers(BaseModel):
    answers: List[str] = Field(default_factory=list)  # consumed in order by INPUT actions

class SectionRequest(Answers):
    section_id: Union[str, int]

class ChoiceRequest(Answers):
    index: int

class LinearizeRequest(BaseModel):
    start_at: Union[str, int]
    end_at: Union[str, int]
    passing_through: List[Union[str, int]] = Field(default_factory=list)

class ExtendRequest(BaseModel):
    section_id: Optional[Union[str, int]] = None  # nearest ai_extendable section when omitted

class ValidateExtensionRequest(BaseModel):
    section_id: Union[str, int]
    response: str

# --- Response Models ---

class StoryCreateResponse(BaseModel):
    key: str
    view: PlayerView

class LinearizeResponse(BaseModel):
    filename: str
    markdown: str

class ExtendResponse(BaseModel):
    key: str
    section_id: str
    status: str

class ValidationResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    view: Optional[PlayerView] = None
