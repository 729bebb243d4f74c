"""
Unit tests for Learning Service.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import patch

from voicedesk.integrations.store import LEARNING_SESSIONS, LEARNING_TOPICS
from voicedesk.models.session import Session
from voicedesk.services.learning_service import LearningService, merge_concepts
from voicedesk.utils.errors import ConcurrentUpdateError, InvalidRequestError, TopicNotFoundError


@pytest.fixture
def conversation():
    started = datetime.now(timezone.utc) - timedelta(minutes=20)
    return Session(provider_session_id="sess_1", user_id="user-1", started_at=started, updated_at=started)


@pytest.fixture
def learning(store, conversation):
    return LearningService(store, "user-1", conversation)


async def create_topic(service, title="Spanish", **fields):
    return (await service.handle("create_topic", {"title": title, **fields}))["topic"]


class TestMergeConcepts:

    def test_union_keeps_order(self):
        assert merge_concepts(["ser vs estar", "numbers"], ["Numbers", "past tense"]) == [
            "ser vs estar", "numbers", "past tense",
        ]

    def test_blank_entries_dropped(self):
        assert merge_concepts([], ["  ", "verbs"]) == ["verbs"]


class TestTopics:

    @pytest.mark.asyncio
    async def test_create_and_list(self, learning):
        await create_topic(learning, "Spanish", difficulty="intermediate")
        await create_topic(learning, "Piano", category="Music")

        listed = await learning.handle("list_topics", {})
        music = await learning.handle("list_topics", {"category": "Music"})

        assert [t["title"] for t in listed["topics"]] == ["Spanish", "Piano"]
        assert listed["topics"][0]["difficulty"] == "intermediate"
        assert listed["topics"][0]["status"] == "not_started"
        assert [t["title"] for t in music["topics"]] == ["Piano"]

    @pytest.mark.asyncio
    async def test_find_by_title_substring(self, learning):
        topic = await create_topic(learning, "Spanish for travel")

        result = await learning.handle("get_topic", {"title": "spanish"})

        assert result["topic"]["id"] == topic["id"]
        assert result["recent_sessions"] == []

    @pytest.mark.asyncio
    async def test_topics_are_per_user(self, store, learning):
        topic = await create_topic(learning)
        other = LearningService(store, "user-2")

        with pytest.raises(TopicNotFoundError):
            await other.handle("get_topic", {"topic_id": topic["id"]})

    @pytest.mark.asyncio
    async def test_complete_topic(self, learning):
        topic = await create_topic(learning)

        result = await learning.handle("complete_topic", {"topic_id": topic["id"]})

        assert result["topic"]["status"] == "completed"
        assert result["topic"]["progress_percentage"] == 100

    @pytest.mark.asyncio
    async def test_delete_topic_removes_sessions(self, store, learning):
        topic = await create_topic(learning)
        await learning.handle("continue_topic", {"topic_id": topic["id"]})

        await learning.handle("delete_topic", {"topic_id": topic["id"]})

        assert await store.count(LEARNING_SESSIONS, {"topic_id": topic["id"]}) == 0
        with pytest.raises(TopicNotFoundError):
            await learning.handle("get_topic", {"topic_id": topic["id"]})

    @pytest.mark.asyncio
    async def test_list_pages(self, learning):
        for title in ("Spanish", "Rust", "Chess"):
            await create_topic(learning, title)

        page = await learning.handle("list_topics", {"limit": 2, "offset": 1})

        assert [t["title"] for t in page["topics"]] == ["Rust", "Chess"]

    @pytest.mark.asyncio
    async def test_update_topic(self, learning):
        topic = await create_topic(learning)

        updated = await learning.update_topic(
            topic["id"], {"description": "For the trip", "difficulty": "intermediate", "progress_percentage": 250}
        )

        assert updated.description == "For the trip"
        assert updated.difficulty.value == "intermediate"
        assert updated.progress_percentage == 100
        assert updated.version == 1
        with pytest.raises(InvalidRequestError):
            await learning.update_topic(topic["id"], {"session_count": 9})

    @pytest.mark.asyncio
    async def test_update_does_not_reset_counters(self, learning):
        topic = await create_topic(learning)
        await learning.handle("continue_topic", {"topic_id": topic["id"]})

        updated = await learning.update_topic(topic["id"], {"title": "Spanish B1"})

        assert updated.title == "Spanish B1"
        assert updated.session_count == 1


class TestStudySessions:

    @pytest.mark.asyncio
    async def test_continue_then_save(self, learning, conversation):
        topic = await create_topic(learning)

        resumed = await learning.handle("continue_topic", {"topic_id": topic["id"]})
        assert resumed["session_number"] == 1
        assert resumed["topic"]["status"] == "in_progress"
        assert resumed["context"]["concepts_covered"] == []

        saved = await learning.handle("save_progress", {
            "topic_id": topic["id"],
            "learning_session_id": resumed["learning_session_id"],
            "summary": "Covered greetings",
            "concepts_covered": ["hola", "buenos dias"],
            "next_steps": "Numbers",
            "progress_percentage": 30,
        })

        assert saved["learning_session_id"] == resumed["learning_session_id"]
        assert saved["topic"]["concepts_covered"] == ["hola", "buenos dias"]
        assert saved["topic"]["progress_percentage"] == 30
        assert saved["topic"]["session_count"] == 1

        again = await learning.handle("continue_topic", {"topic_id": topic["id"]})
        assert again["session_number"] == 2
        assert again["context"]["last_summary"] == "Covered greetings"
        assert again["context"]["next_steps"] == "Numbers"
        assert again["context"]["progress_percentage"] == 30

    @pytest.mark.asyncio
    async def test_overlapping_continues_get_distinct_numbers(self, store, learning):
        topic = await create_topic(learning)
        real_get = store.get

        async def yielding_get(table, key):
            row = await real_get(table, key)
            await asyncio.sleep(0)
            return row

        with patch.object(store, "get", side_effect=yielding_get):
            first, second = await asyncio.gather(
                learning.handle("continue_topic", {"topic_id": topic["id"]}),
                learning.handle("continue_topic", {"topic_id": topic["id"]}),
            )

        assert sorted([first["session_number"], second["session_number"]]) == [1, 2]
        stored = await store.get(LEARNING_TOPICS, topic["id"])
        assert stored["session_count"] == 2
        assert await store.count(LEARNING_SESSIONS, {"topic_id": topic["id"]}) == 2

    @pytest.mark.asyncio
    async def test_topic_update_gives_up_after_retries(self, store):
        learning = LearningService(store, "user-1", max_retries=1)
        topic = await create_topic(learning)

        with patch.object(store, "compare_and_set", return_value=False) as cas:
            with pytest.raises(ConcurrentUpdateError):
                await learning.handle("continue_topic", {"topic_id": topic["id"]})

        assert cas.call_count == 2
        assert await store.count(LEARNING_SESSIONS, {"topic_id": topic["id"]}) == 0

    @pytest.mark.asyncio
    async def test_save_merges_concepts(self, learning):
        topic = await create_topic(learning)
        await learning.handle("save_progress", {"topic_id": topic["id"], "concepts_covered": "hola, numbers"})

        saved = await learning.handle("save_progress", {
            "topic_id": topic["id"],
            "concepts_covered": ["Numbers", "colors"],
        })

        assert saved["topic"]["concepts_covered"] == ["hola", "numbers", "colors"]

    @pytest.mark.asyncio
    async def test_save_without_open_session_uses_conversation_start(self, learning):
        """Progress saved without continue_topic counts from the conversation start."""
        topic = await create_topic(learning)

        saved = await learning.handle("save_progress", {"topic_id": topic["id"], "summary": "Warm-up"})

        assert saved["duration_minutes"] == 20
        assert saved["topic"]["total_minutes"] == 20
        assert saved["topic"]["session_count"] == 1

    @pytest.mark.asyncio
    async def test_full_progress_completes_topic(self, learning):
        topic = await create_topic(learning)

        saved = await learning.handle("save_progress", {"topic_id": topic["id"], "progress_percentage": 150})

        assert saved["topic"]["progress_percentage"] == 100
        assert saved["topic"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_foreign_learning_session(self, learning):
        first = await create_topic(learning, "Spanish")
        second = await create_topic(learning, "Piano")
        resumed = await learning.handle("continue_topic", {"topic_id": first["id"]})

        with pytest.raises(InvalidRequestError):
            await learning.handle("save_progress", {
                "topic_id": second["id"],
                "learning_session_id": resumed["learning_session_id"],
            })

    @pytest.mark.asyncio
    async def test_stats(self, learning):
        topic = await create_topic(learning)
        await learning.handle("save_progress", {"topic_id": topic["id"], "progress_percentage": 40})
        await create_topic(learning, "Piano")

        stats = await learning.handle("stats", {})

        assert stats["total_topics"] == 2
        assert stats["total_sessions"] == 1
        assert stats["average_progress"] == 20
        assert stats["by_status"] == {"in_progress": 1, "not_started": 1}

    @pytest.mark.asyncio
    async def test_list_sessions_newest_first(self, learning):
        topic = await create_topic(learning)
        await learning.handle("continue_topic", {"topic_id": topic["id"]})
        await learning.handle("continue_topic", {"topic_id": topic["id"]})

        sessions = await learning.list_sessions(topic["id"])
        first_page = await learning.list_sessions(topic["id"], limit=1)

        assert [s.session_number for s in sessions] == [2, 1]
        assert [s.session_number for s in first_page] == [2]
