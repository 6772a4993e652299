import json

from story_adventure.services import sse_service
from story_adventure.services.sse_service import RedisClient, format_sse, publish_story_event, sse_generator


def test_format_sse_names_event():
    message = json.dumps({"event": "extension_progress", "received": 120})
    assert format_sse(message) == f"event: extension_progress\ndata: {message}\n\n"


def test_format_sse_plain_message():
    assert format_sse("hello") == "event: message\ndata: hello\n\n"


async def test_publish_without_connection_is_dropped():
    client = RedisClient("redis://localhost:6379/0")
    assert client.connected is False
    await client.publish("story:k", {"event": "extension_started"})


async def test_publish_story_event_targets_story_channel(monkeypatch):
    published = []

    async def publish(channel, message):
        published.append((channel, message))

    monkeypatch.setattr(sse_service.redis_client, "publish", publish)
    await publish_story_event("forest", "extension_started", section_id="4")
    await publish_story_event(None, "extension_started", section_id="4")
    assert published == [("story:forest", {"event": "extension_started", "section_id": "4"})]


async def test_sse_generator_stops_after_terminal_event(monkeypatch):
    messages = [
        json.dumps({"event": "extension_started"}),
        json.dumps({"event": "extension_progress", "received": 10}),
        json.dumps({"event": "extension_complete", "new_sections": ["4_ext_1"]}),
        json.dumps({"event": "never_sent"}),
    ]
    channels = []

    async def listen(channel):
        channels.append(channel)
        for message in messages:
            yield message

    monkeypatch.setattr(sse_service.redis_client, "listen", listen)
    events = [chunk async for chunk in sse_generator("forest")]
    assert channels == ["story:forest"]
    assert [chunk.split("\n")[0] for chunk in events] == [
        "event: extension_started",
        "event: extension_progress",
        "event: extension_complete",
    ]
