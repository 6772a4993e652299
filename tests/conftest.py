import copy
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from story_adventure.database import init_db
from story_adventure.schemas.story import Story


FOREST_STORY = {
    "meta": {"title": "The Dark Forest", "author": {"name": "Ada"}, "year": 2024},
    "variables": {"name": {"default": "", "description": "Hero name"}},
    "sections": {
        "1": {
            "id": "1",
            "text_lines": ["# The Edge", "", "You stand at the edge of a forest."],
            "next": [{"text": "Enter", "next": "2"}],
        },
        "2": {
            "id": "2",
            "text": "Two paths split before you, ${name}.",
            "media": {"type": "image", "src": "forest.png"},
            "next": [{"text": "Left", "next": "3"}, {"text": "Right", "next": "4"}],
        },
        "3": {"id": "3", "text": "A quiet clearing.", "next": [{"text": "Go on", "next": "5"}]},
        "4": {
            "id": "4",
            "text": "A roaring river.",
            "media": {"type": "video", "src": "river.mp4"},
            "next": [{"text": "Swim", "next": "5"}],
            "ai_extendable": True,
        },
        "5": {"id": "5", "text": "The end.", "next": []},
    },
}


def make_story(sections, **extra) -> Story:
    """
    Builds a story from compact section definitions keyed by id.
    """
    document = {"sections": {}}
    for section_id, section in sections.items():
        document["sections"][section_id] = {"id": section_id, **section}
    document.update(extra)
    return Story.from_json_dict(document)


@pytest.fixture
def forest_document():
    return copy.deepcopy(FOREST_STORY)


@pytest.fixture
def forest_story(forest_document):
    return Story.from_json_dict(forest_document)


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    session_factory = async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


class FakeStream:
    def __init__(self, pieces, error=None):
        self._pieces = list(pieces)
        self._error = error

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._pieces:
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        piece = self._pieces.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))])


class FakeLlmClient:
    """
    Stands in for openai.AsyncOpenAI: streams a canned response in pieces.
    """

    def __init__(self, response="", error=None, chunk_size=64):
        self.calls = []
        pieces = [response[i:i + chunk_size] for i in range(0, len(response), chunk_size)]

        async def create(**kwargs):
            self.calls.append(kwargs)
            return FakeStream(pieces, error)

        self.chat = SimpleNamespace(completions=SimpleNamespace(create=create))


@pytest.fixture
def fake_llm():
    return FakeLlmClient
