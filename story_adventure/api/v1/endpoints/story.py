import logging
import uuid
import openai
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from story_adventure.schemas import api as api_schema
from story_adventure.schemas.story import Story, assert_graph_integrity, file_safe_title
from story_adventure.core.errors import (
    InvalidChoiceError,
    LinearizationError,
    MissingSectionError,
    StoryAdventureError,
    StoryFormatError,
    StoryNotLoadedError,
)
from story_adventure.crud import crud_story
from story_adventure.database import AsyncSessionLocal, get_session
from story_adventure.services import story_extender
from story_adventure.services.ai_validator import validate_ai_story_update
from story_adventure.services.linearizer import linearize_story
from story_adventure.services.player import StoryPlayer
from story_adventure.services.prompt_builder import find_extendable_section
from story_adventure.services.sse_service import publish_story_event

router = APIRouter()


def _answer_prompt(answers: List[str]):
    """
    Builds the INPUT prompt for a request: answers are handed out in order,
    and a prompt without an answer left is cancelled.
    """
    pending = list(answers)

    def prompt(message: str) -> Optional[str]:
        if not pending:
            logging.info(f"No answer supplied for prompt {message!r}")
            return None
        return pending.pop(0)

    return prompt


async def _get_story_or_404(db: AsyncSession, key: str) -> Story:
    try:
        story = await crud_story.get_story(db, key)
    except StoryFormatError:
        raise HTTPException(status_code=500, detail="Failed to parse stored story.")
    if story is None:
        raise HTTPException(status_code=404, detail="Story not found")
    return story


def _start_player(story: Story, answers: List[str] = ()) -> StoryPlayer:
    player = StoryPlayer(prompt=_answer_prompt(list(answers)))
    try:
        player.load_story(story)
    except StoryNotLoadedError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return player


async def _navigate(db: AsyncSession, key: str, answers: List[str], move) -> api_schema.PlayerView:
    """
    Runs one navigation step against the stored story and saves the result.
    Nothing is saved when the step fails.
    """
    story = await _get_story_or_404(db, key)
    player = _start_player(story, answers)
    try:
        move(player)
    except MissingSectionError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidChoiceError as e:
        raise HTTPException(status_code=422, detail=str(e))
    await crud_story.save_story(db, key, story)
    return player.view()


# --- Stories ---

@router.post("/stories", response_model=api_schema.StoryCreateResponse, status_code=201)
async def create_story(
    story_in: api_schema.StoryCreate,
    db: AsyncSession = Depends(get_session),
):
    """
    Stores a story (or a fresh one) and starts playing it.
    """
    key = story_in.key or uuid.uuid4().hex
    if story_in.key and await crud_story.get_story(db, key) is not None:
        raise HTTPException(status_code=409, detail=f"Story {key} already exists")

    story = story_in.story if story_in.story is not None else Story.new()
    player = _start_player(story)
    await crud_story.save_story(db, key, story)
    logging.info(f"Created story {key} with {len(story.sections)} sections")
    return api_schema.StoryCreateResponse(key=key, view=player.view())

@router.get("/stories", response_model=List[crud_story.StoredStorySummary])
async def list_stories(db: AsyncSession = Depends(get_session)):
    return await crud_story.list_stories(db)

@router.get("/stories/{key}")
async def get_story(key: str, db: AsyncSession = Depends(get_session)):
    """
    Returns the story document, run-time state included.
    """
    story = await _get_story_or_404(db, key)
    return JSONResponse(content=story.to_json_dict())

@router.put("/stories/{key}", response_model=api_schema.PlayerView)
async def replace_story(key: str, story: Story, db: AsyncSession = Depends(get_session)):
    """
    Replaces a stored story wholesale, like loading a story file.
    """
    player = _start_player(story)
    await crud_story.save_story(db, key, story)
    logging.info(f"Replaced story {key}")
    return player.view()

@router.delete("/stories/{key}", status_code=204)
async def delete_story(key: str, db: AsyncSession = Depends(get_session)):
    if not await crud_story.delete_story(db, key):
        raise HTTPException(status_code=404, detail="Story not found")
    logging.info(f"Deleted story {key}")
    return Response(status_code=204)


# --- Player ---

@router.get("/stories/{key}/play", response_model=api_schema.PlayerView)
async def get_player_view(key: str, db: AsyncSession = Depends(get_session)):
    story = await _get_story_or_404(db, key)
    return _start_player(story).view()

@router.post("/stories/{key}/play/section", response_model=api_schema.PlayerView)
async def load_section(key: str, request: api_schema.SectionRequest, db: AsyncSession = Depends(get_session)):
    return await _navigate(db, key, request.answers, lambda player: player.load_section(request.section_id))

@router.post("/stories/{key}/play/choice", response_model=api_schema.PlayerView)
async def choose(key: str, request: api_schema.ChoiceRequest, db: AsyncSession = Depends(get_session)):
    return await _navigate(db, key, request.answers, lambda player: player.choose(request.index))

@router.post("/stories/{key}/play/forward", response_model=api_schema.PlayerView)
async def step_forward(
    key: str,
    request: Optional[api_schema.Answers] = None,
    db: AsyncSession = Depends(get_session),
):
    answers = request.answers if request else []
    return await _navigate(db, key, answers, lambda player: player.one_step_forward())

@router.post("/stories/{key}/play/back", response_model=api_schema.PlayerView)
async def step_back(
    key: str,
    request: Optional[api_schema.Answers] = None,
    db: AsyncSession = Depends(get_session),
):
    answers = request.answers if request else []
    return await _navigate(db, key, answers, lambda player: player.one_step_back())


# --- Export ---

@router.post("/stories/{key}/linearize", response_model=api_schema.LinearizeResponse)
async def linearize(key: str, request: api_schema.LinearizeRequest, db: AsyncSession = Depends(get_session)):
    """
    Exports one read-through of the story as Markdown.
    """
    story = await _get_story_or_404(db, key)
    try:
        markdown = linearize_story(story, request.start_at, request.end_at, request.passing_through)
    except LinearizationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return api_schema.LinearizeResponse(filename=f"{file_safe_title(story)}.md", markdown=markdown)


# --- AI extension ---

async def _extend_stored_story(db: AsyncSession, key: str, section_id: str):
    story = await crud_story.get_story(db, key)
    if story is None:
        logging.warning(f"Story {key} disappeared before extension started")
        await publish_story_event(key, "extension_failed", section_id=section_id, message="Story not found")
        return
    client = story_extender.create_client()
    result = await story_extender.extend_story(client, story, section_id, key=key)
    if not result.valid:
        return

    # The player may have moved on while the model was writing
    latest = await crud_story.get_story(db, key)
    if latest is None:
        logging.warning(f"Story {key} was deleted during extension, dropping result")
        return
    merged = validate_ai_story_update(latest, result.story.to_json_text(indent=None), section_id)
    if not merged.valid:
        logging.warning(f"Story {key} changed during extension, dropping result: {merged.error}")
        return
    assert_graph_integrity(merged.story)
    await crud_story.save_story(db, key, merged.story)
    logging.info(f"Saved extension of section {section_id} for story {key}")

async def run_extension(key: str, section_id: str):
    """
    Extends a stored story in the background and saves the result when it is
    still a valid extension of the story as stored by then. Any failure is
    published as an extension_failed event.
    """
    async with AsyncSessionLocal() as db:
        try:
            await _extend_stored_story(db, key, section_id)
        except (StoryAdventureError, openai.OpenAIError) as e:
            logging.error(f"Extension of section {section_id} for story {key} failed: {e}")
            await publish_story_event(key, "extension_failed", section_id=section_id, message=f"AI extension failed: {e}")

@router.post("/stories/{key}/extend", response_model=api_schema.ExtendResponse, status_code=202)
async def extend(
    key: str,
    request: api_schema.ExtendRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
):
    """
    Schedules an AI extension. Progress is streamed on /events/{key}.
    """
    story = await _get_story_or_404(db, key)
    if request.section_id is not None:
        section_id = str(request.section_id)
        if story.get_section(section_id) is None:
            raise HTTPException(status_code=404, detail=str(MissingSectionError(section_id)))
    else:
        player = _start_player(story)
        section_id = find_extendable_section(story, player.current_section_id)
        if section_id is None:
            raise HTTPException(status_code=422, detail="No AI-extendable section within look-ahead range")

    background_tasks.add_task(run_extension, key, section_id)
    return api_schema.ExtendResponse(key=key, section_id=section_id, status="scheduled")

@router.post("/stories/{key}/validate-extension", response_model=api_schema.ValidationResponse)
async def validate_extension(
    key: str,
    request: api_schema.ValidateExtensionRequest,
    db: AsyncSession = Depends(get_session),
):
    """
    Validates a model response produced elsewhere and adopts it when valid.
    """
    story = await _get_story_or_404(db, key)
    result = validate_ai_story_update(story, request.response, request.section_id)
    if not result.valid:
        raise HTTPException(status_code=422, detail=result.error)
    assert_graph_integrity(result.story)
    player = _start_player(result.story)
    await crud_story.save_story(db, key, result.story)
    return api_schema.ValidationResponse(valid=True, view=player.view())
