from typing import List, Optional
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from story_adventure.models import story as story_model
from story_adventure.schemas.story import Story
from datetime import datetime, timedelta, timezone


class StoredStorySummary(BaseModel):
    key: str
    title: Optional[str] = None
    updated_at: Optional[datetime] = None


async def _get_record(db: AsyncSession, key: str) -> Optional[story_model.StoredStory]:
    result = await db.execute(select(story_model.StoredStory).where(story_model.StoredStory.key == key))
    return result.scalars().first()


async def save_story(db: AsyncSession, key: str, story: Story) -> Story:
    """
    Saves a story under a key, creating the record or replacing its content.
    """
    story_json = story.to_json_text(indent=None)
    title = story.meta.title if story.meta else None
    record = await _get_record(db, key)
    if record is None:
        record = story_model.StoredStory(key=key, title=title, story_json=story_json)
        db.add(record)
    else:
        record.title = title
        record.story_json = story_json
        record.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
    await db.commit()
    await db.refresh(record)
    return story


async def get_story(db: AsyncSession, key: str) -> Optional[Story]:
    """
    Retrieves a story by its key. Raises StoryFormatError when the stored
    document is corrupt.
    """
    record = await _get_record(db, key)
    if record is None:
        return None
    return Story.from_json_text(record.story_json)


async def list_stories(db: AsyncSession) -> List[StoredStorySummary]:
    result = await db.execute(
        select(story_model.StoredStory).order_by(story_model.StoredStory.updated_at.desc())
    )
    return [
        StoredStorySummary(key=record.key, title=record.title, updated_at=record.updated_at)
        for record in result.scalars().all()
    ]


async def delete_story(db: AsyncSession, key: str) -> bool:
    """
    Deletes a story. Returns False when there was nothing to delete.
    """
    record = await _get_record(db, key)
    if record is None:
        return False
    await db.delete(record)
    await db.commit()
    return True


async def remove_inactive_stories(db: AsyncSession, inactive_hours: int) -> int:
    """
    Deletes stories that have not been updated for a specified number of hours.

    :param db: The async database session.
    :param inactive_hours: The threshold in hours for a story to be considered inactive.
    :return: The number of stories deleted.
    """
    threshold = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=inactive_hours)

    result = await db.execute(
        select(story_model.StoredStory)
        .where(story_model.StoredStory.updated_at < threshold)
    )
    inactive_stories = result.scalars().all()

    count = len(inactive_stories)

    if count > 0:
        for record in inactive_stories:
            await db.delete(record)
        await db.commit()

    return count
