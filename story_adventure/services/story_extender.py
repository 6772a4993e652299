import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

import openai
from pydantic import BaseModel

from story_adventure.core.config import settings
from story_adventure.schemas.story import Story, assert_graph_integrity
from story_adventure.services.ai_validator import ValidationResult, validate_ai_story_update
from story_adventure.services.prompt_builder import build_prompt_messages, restore_embedded_media
from story_adventure.services.sse_service import publish_story_event

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


class LlmResponse(BaseModel):
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None


def create_client() -> openai.AsyncOpenAI:
    return openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY or None, base_url=settings.OPENAI_BASE_URL)


async def call_llm(
    client: openai.AsyncOpenAI,
    messages: List[Dict[str, str]],
    on_progress: Optional[ProgressCallback] = None,
) -> LlmResponse:
    """
    Streams a chat completion and returns the complete text.

    Transport failures are returned as an unsuccessful response, never raised,
    and are not retried.
    """
    full_content = ""
    last_publish_time = time.time()
    try:
        stream = await client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=messages,
            temperature=settings.OPENAI_TEMPERATURE,
            stream=True,
        )
        async for chunk in stream:
            if chunk.choices:
                full_content += chunk.choices[0].delta.content or ""

            current_time = time.time()
            if on_progress is not None and current_time - last_publish_time > 0.5:  # Publish every 0.5 seconds
                await on_progress(len(full_content))
                last_publish_time = current_time
    except openai.OpenAIError as e:
        logger.error(f"LLM call failed: {e}")
        return LlmResponse(success=False, error=str(e))

    if not full_content.strip():
        return LlmResponse(success=False, error="LLM returned an empty response")
    logger.info(f"LLM response received, length: {len(full_content)}")
    return LlmResponse(success=True, content=full_content)


async def extend_story(
    client: openai.AsyncOpenAI,
    story: Story,
    section_id,
    key: Optional[str] = None,
) -> ValidationResult:
    """
    Asks the model to extend the story from a section and validates the answer.

    The live story is never modified: the caller adopts `result.story` when
    `result.valid` is true. Progress is published on the story's event channel
    when a storage key is given.
    """
    section_id = str(section_id)
    logger.info(f"Extending section {section_id} of story {key}")
    await publish_story_event(key, "extension_started", section_id=section_id,
                              status=f"Generating new story content from section {section_id}...")

    messages, placeholders = build_prompt_messages(story, section_id)

    async def report_progress(received: int):
        await publish_story_event(key, "extension_progress", section_id=section_id, received=received)

    response = await call_llm(client, messages, on_progress=report_progress)
    if not response.success:
        error = f"AI extension failed: {response.error or 'Unknown error'}"
        await publish_story_event(key, "extension_failed", section_id=section_id, message=error)
        return ValidationResult(valid=False, error=error)

    result = validate_ai_story_update(story, restore_embedded_media(response.content, placeholders), section_id)
    if not result.valid:
        await publish_story_event(key, "extension_failed", section_id=section_id,
                                  message=f"AI extension validation failed: {result.error}")
        return result

    assert_graph_integrity(result.story)

    new_sections = [sid for sid in result.story.sections if sid not in story.sections]
    logger.info(f"Section {section_id} extended with {len(new_sections)} new sections")
    await publish_story_event(key, "extension_complete", section_id=section_id, new_sections=new_sections)
    return result
