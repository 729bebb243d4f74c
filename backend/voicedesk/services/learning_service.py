"""
Learning service - handler behind the `learning_actions` tool.

A topic is studied over many conversations. continue_topic opens a new
learning session and hands back where the user left off; save_progress
closes it, merging the newly covered concepts into the topic.
"""
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from voicedesk.config import get_settings
from voicedesk.integrations.store import MemoryStore, LEARNING_SESSIONS, LEARNING_TOPICS
from voicedesk.models.learning import Difficulty, LearningSession, LearningTopic, TopicStatus
from voicedesk.models.session import Session
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import (
    ConcurrentUpdateError,
    InvalidRequestError,
    TopicNotFoundError,
    UnknownActionError,
)
from voicedesk.utils.validators import clamp_int, optional_str, require_str

logger = get_logger(__name__)

TOOL_NAME = "learning_actions"


def merge_concepts(existing: List[str], new: List[str]) -> List[str]:
    """Union keeping first-seen order; duplicates compare case-insensitively."""
    merged = []
    seen = set()
    for concept in list(existing) + list(new):
        concept = str(concept).strip()
        if not concept or concept.lower() in seen:
            continue
        seen.add(concept.lower())
        merged.append(concept)
    return merged


def _concept_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(item) for item in value]


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        raise InvalidRequestError(
            f"Invalid {field} '{value}'",
            details={"field": field, "allowed": [e.value for e in enum_cls]},
        )


class LearningService:
    """
    Learning-topic operations for one user.

    Usage:
        service = LearningService(store, user_id, conversation_session)
        result = await service.handle("continue_topic", {"title": "spanish"})
        result = await service.handle("save_progress", {"topic_id": ..., "concepts_covered": ["ser vs estar"]})
    """

    def __init__(
        self,
        store: MemoryStore,
        user_id: str,
        conversation: Optional[Session] = None,
        max_retries: Optional[int] = None,
    ):
        self.store = store
        self.user_id = user_id
        self.conversation = conversation
        self.max_retries = max_retries if max_retries is not None else get_settings().store_max_retries
        self._actions = {
            "list_topics": self.list_topics,
            "create_topic": self.create_topic,
            "get_topic": self.get_topic,
            "continue_topic": self.continue_topic,
            "save_progress": self.save_progress,
            "complete_topic": self.complete_topic,
            "delete_topic": self.delete_topic,
            "stats": self.stats,
        }

    async def handle(self, action: Optional[str], args: dict) -> dict:
        handler = self._actions.get(action or "")
        if handler is None:
            raise UnknownActionError(TOOL_NAME, action, list(self._actions))
        return await handler(args)

    async def _topics(
        self, filters: Optional[dict] = None, offset: int = 0, limit: Optional[int] = None
    ) -> List[LearningTopic]:
        rows = await self.store.select(
            LEARNING_TOPICS,
            {"user_id": self.user_id, **(filters or {})},
            order_by="created_at",
            offset=offset,
            limit=limit,
        )
        return [LearningTopic.model_validate(row) for row in rows]

    async def _require_topic(self, args: dict) -> LearningTopic:
        """Find a topic by `topic_id`, else by `title` substring (oldest match)."""
        topic_id = optional_str(args, "topic_id")
        if topic_id:
            row = await self.store.get(LEARNING_TOPICS, topic_id)
            if not row or row.get("user_id") != self.user_id:
                raise TopicNotFoundError(topic_id)
            return LearningTopic.model_validate(row)

        needle = require_str(args, "title").lower()
        for topic in await self._topics():
            if needle in topic.title.lower():
                return topic
        raise TopicNotFoundError(args["title"])

    async def _update_topic(self, topic_id: str, changes_for: Callable[[LearningTopic], dict]) -> LearningTopic:
        """
        Optimistic read-modify-write on a topic row.

        changes_for() is computed from the latest stored topic, and the write
        only lands if nobody committed in between, so counters and concept
        lists never lose a concurrent update.

        Raises:
            TopicNotFoundError: Topic was deleted
            ConcurrentUpdateError: Lost the race max_retries + 1 times
        """
        for attempt in range(self.max_retries + 1):
            row = await self.store.get(LEARNING_TOPICS, topic_id)
            if not row:
                raise TopicNotFoundError(topic_id)

            current = LearningTopic.model_validate(row)
            updated = current.model_copy(update={
                **changes_for(current),
                "updated_at": datetime.now(timezone.utc),
                "version": current.version + 1,
            })
            if await self.store.compare_and_set(LEARNING_TOPICS, topic_id, current.version, updated.model_dump()):
                return updated

            logger.info(f"Version conflict on topic {topic_id} (attempt {attempt + 1}), retrying")

        raise ConcurrentUpdateError(LEARNING_TOPICS, topic_id)

    # =========================================================================
    # TOPICS
    # =========================================================================

    async def list_topics(self, args: dict) -> dict:
        filters = {}
        if args.get("status"):
            filters["status"] = _parse_enum(TopicStatus, args["status"], "status")
        if optional_str(args, "category"):
            filters["category"] = optional_str(args, "category")
        topics = await self._topics(
            filters,
            offset=clamp_int(args.get("offset"), default=0, minimum=0, maximum=10_000),
            limit=clamp_int(args.get("limit"), default=50, minimum=1, maximum=100),
        )
        return {
            "count": len(topics),
            "topics": [topic.model_dump(mode="json") for topic in topics],
        }

    async def create_topic(self, args: dict) -> dict:
        now = datetime.now(timezone.utc)
        topic = LearningTopic(
            user_id=self.user_id,
            title=require_str(args, "title"),
            description=optional_str(args, "description"),
            category=optional_str(args, "category") or "General",
            difficulty=_parse_enum(Difficulty, args["difficulty"], "difficulty") if args.get("difficulty") else Difficulty.BEGINNER,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(LEARNING_TOPICS, topic.model_dump())
        logger.info(f"Created learning topic '{topic.title}' for user: {self.user_id}")
        return {"topic": topic.model_dump(mode="json")}

    async def get_topic(self, args: dict) -> dict:
        topic = await self._require_topic(args)
        rows = await self.store.select(
            LEARNING_SESSIONS, {"topic_id": topic.id}, order_by="started_at", descending=True, limit=5
        )
        return {
            "topic": topic.model_dump(mode="json"),
            "recent_sessions": [LearningSession.model_validate(r).model_dump(mode="json") for r in rows],
        }

    async def complete_topic(self, args: dict) -> dict:
        topic = await self._require_topic(args)
        topic = await self._update_topic(
            topic.id, lambda current: {"status": TopicStatus.COMPLETED, "progress_percentage": 100}
        )
        logger.info(f"Completed learning topic {topic.id}")
        return {"topic": topic.model_dump(mode="json")}

    async def delete_topic(self, args: dict) -> dict:
        topic = await self._require_topic(args)
        await self.store.delete(LEARNING_TOPICS, topic.id)
        logger.info(f"Deleted learning topic {topic.id} for user: {self.user_id}")
        return {"topic_id": topic.id, "deleted": True}

    async def update_topic(self, topic_id: str, changes: dict) -> LearningTopic:
        """
        Edit a topic from the app. Only descriptive fields, status and
        progress can be set here; counters move through study sessions.
        """
        await self._require_topic({"topic_id": topic_id})

        updates = {}
        if "title" in changes:
            updates["title"] = require_str(changes, "title")
        if "category" in changes:
            updates["category"] = optional_str(changes, "category") or "General"
        for field in ("description", "last_summary", "next_steps"):
            if field in changes:
                updates[field] = optional_str(changes, field)
        if changes.get("difficulty"):
            updates["difficulty"] = _parse_enum(Difficulty, changes["difficulty"], "difficulty")
        if changes.get("status"):
            updates["status"] = _parse_enum(TopicStatus, changes["status"], "status")
        if changes.get("progress_percentage") is not None:
            updates["progress_percentage"] = clamp_int(changes["progress_percentage"], default=0, minimum=0, maximum=100)

        if not updates:
            raise InvalidRequestError("Nothing to update")

        topic = await self._update_topic(topic_id, lambda current: updates)
        logger.info(f"Updated learning topic {topic_id}: {', '.join(sorted(updates))}")
        return topic

    async def list_sessions(self, topic_id: str, limit: int = 20, offset: int = 0) -> List[LearningSession]:
        """Study sessions of one topic, newest first."""
        topic = await self._require_topic({"topic_id": topic_id})
        rows = await self.store.select(
            LEARNING_SESSIONS,
            {"topic_id": topic.id},
            order_by="session_number",
            descending=True,
            offset=offset,
            limit=limit,
        )
        return [LearningSession.model_validate(row) for row in rows]

    # =========================================================================
    # STUDY SESSIONS
    # =========================================================================

    async def _open_session(
        self, topic_id: str, started_at: datetime, **changes
    ) -> Tuple[LearningTopic, LearningSession]:
        """
        Claim the next session number on the topic, then record the session.

        Returns (topic, learning_session).
        """
        topic = await self._update_topic(
            topic_id, lambda current: {"session_count": current.session_count + 1, **changes}
        )
        learning_session = LearningSession(
            topic_id=topic.id,
            user_id=self.user_id,
            conversation_session_id=self.conversation.id if self.conversation else None,
            session_number=topic.session_count,
            started_at=started_at,
        )
        await self.store.insert(LEARNING_SESSIONS, learning_session.model_dump())
        return topic, learning_session

    async def continue_topic(self, args: dict) -> dict:
        """
        Resume a topic: open a new learning session and return the saved
        summary, next steps, progress and concepts so the conversation can
        pick up without re-deriving them.
        """
        topic = await self._require_topic(args)
        now = datetime.now(timezone.utc)
        topic, learning_session = await self._open_session(
            topic.id, now, status=TopicStatus.IN_PROGRESS, last_session_at=now
        )

        logger.info(f"Continuing topic {topic.id}, session #{learning_session.session_number}")
        return {
            "topic": topic.model_dump(mode="json"),
            "learning_session_id": learning_session.id,
            "session_number": learning_session.session_number,
            "context": {
                "last_summary": topic.last_summary,
                "next_steps": topic.next_steps,
                "progress_percentage": topic.progress_percentage,
                "concepts_covered": topic.concepts_covered,
            },
        }

    async def _current_session(self, topic: LearningTopic, args: dict) -> Optional[LearningSession]:
        learning_session_id = optional_str(args, "learning_session_id")
        if learning_session_id:
            row = await self.store.get(LEARNING_SESSIONS, learning_session_id)
            if not row or row.get("topic_id") != topic.id:
                raise InvalidRequestError(
                    f"Learning session '{learning_session_id}' does not belong to this topic",
                    details={"field": "learning_session_id"},
                )
            return LearningSession.model_validate(row)

        open_rows = await self.store.select(
            LEARNING_SESSIONS,
            {"topic_id": topic.id, "ended_at": None},
            order_by="started_at",
            descending=True,
            limit=1,
        )
        return LearningSession.model_validate(open_rows[0]) if open_rows else None

    async def save_progress(self, args: dict) -> dict:
        """
        Close the current learning session and fold it into the topic.

        Concepts are merged into the topic's list, never replaced. Duration
        runs from the learning session's start, or from the conversation's
        start when no learning session was opened.
        """
        topic = await self._require_topic(args)
        now = datetime.now(timezone.utc)

        learning_session = await self._current_session(topic, args)
        if learning_session is None:
            started_at = self.conversation.started_at if self.conversation else now
            topic, learning_session = await self._open_session(topic.id, started_at)

        duration_minutes = max(0, round((now - learning_session.started_at).total_seconds() / 60))
        new_concepts = _concept_list(args.get("concepts_covered"))
        summary = optional_str(args, "summary")
        next_steps = optional_str(args, "next_steps")

        def fold_in(current: LearningTopic) -> dict:
            progress = current.progress_percentage
            if args.get("progress_percentage") is not None:
                progress = clamp_int(args["progress_percentage"], default=progress, minimum=0, maximum=100)
            return {
                "concepts_covered": merge_concepts(current.concepts_covered, new_concepts),
                "last_summary": summary or current.last_summary,
                "next_steps": next_steps or current.next_steps,
                "progress_percentage": progress,
                "total_minutes": current.total_minutes + duration_minutes,
                "status": TopicStatus.COMPLETED if progress >= 100 else TopicStatus.IN_PROGRESS,
                "last_session_at": now,
            }

        topic = await self._update_topic(topic.id, fold_in)
        progress = topic.progress_percentage

        await self.store.update(LEARNING_SESSIONS, learning_session.id, {
            "ended_at": now,
            "duration_minutes": duration_minutes,
            "summary": summary,
            "concepts_covered": new_concepts,
            "next_steps": next_steps,
            "progress_percentage": progress,
        })

        logger.info(f"Saved progress on topic {topic.id}: {duration_minutes} min, {progress}%")
        return {
            "topic": topic.model_dump(mode="json"),
            "learning_session_id": learning_session.id,
            "duration_minutes": duration_minutes,
        }

    async def stats(self, args: dict) -> dict:
        topics = await self._topics()
        return {
            "total_topics": len(topics),
            "by_status": dict(Counter(t.status.value for t in topics)),
            "total_sessions": sum(t.session_count for t in topics),
            "total_minutes": sum(t.total_minutes for t in topics),
            "average_progress": round(sum(t.progress_percentage for t in topics) / len(topics)) if topics else 0,
        }
