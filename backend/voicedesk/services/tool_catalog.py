"""
Tool Catalog - static registry of the tools the voice model can call.

Tools are grouped by domain (the conversation mode that exposes them).
Meta tools are exposed in every mode. The module-level definitions are never
handed out directly: accessors return deep copies, and the resolver fills in
runtime facts on those copies.

Tools:
  Meta
    set_mode          → switch the conversation domain
    select_account    → pick which connected Google account to act on

  email     → email_actions     (search, get, draft, send, reply, summary, drafts)
  calendar  → calendar_actions  (list, create, update, delete)
  todo      → todo_actions      (list, create, update, complete, delete, stats)
  learning  → learning_actions  (topics, continue, save progress, stats)
  relax     → no domain tools
"""
from typing import Dict, List, Optional, Set

from voicedesk.models.session import Mode
from voicedesk.models.tool import AuthLevel, ToolDefinition, ToolPolicy

# Placeholder filled in by the resolver with the user's connected accounts
ACCOUNTS_PLACEHOLDER = "{accounts}"

# Modes whose tools act on a connected Google account
ACCOUNT_SCOPED_MODES = {Mode.EMAIL, Mode.CALENDAR}

SELECTABLE_MODES = [m.value for m in Mode if m != Mode.NONE]


# =============================================================================
# META TOOLS
# =============================================================================

SET_MODE = ToolDefinition(
    name="set_mode",
    description=(
        "Switch the assistant to a task mode. Call this as soon as the user wants to work on "
        "email, calendar, todos, learning, or just relax. The tools for that mode become "
        "available after the switch."
    ),
    parameters={
        "type": "object",
        "properties": {
            "mode": {
                "type": "string",
                "enum": SELECTABLE_MODES,
                "description": "The mode to switch to",
            },
        },
        "required": ["mode"],
    },
)

SELECT_ACCOUNT = ToolDefinition(
    name="select_account",
    description=(
        "Choose which connected Google account to use for email and calendar actions. "
        "Available accounts: " + ACCOUNTS_PLACEHOLDER
    ),
    parameters={
        "type": "object",
        "properties": {
            "email": {
                "type": "string",
                "description": "Email address of the connected account to use",
            },
        },
        "required": ["email"],
    },
)


# =============================================================================
# DOMAIN TOOLS
# =============================================================================

EMAIL_ACTIONS = ToolDefinition(
    name="email_actions",
    description=(
        "Work with the selected Gmail account: search or read emails, summarize the inbox, "
        "send new emails, reply to an email, and manage drafts. Always confirm with the user "
        "before sending."
    ),
    parameters={
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": [
                    "search", "get", "draft", "send", "reply", "summary",
                    "list_drafts", "update_draft", "delete_draft", "send_draft",
                ],
            },
            "query": {"type": "string", "description": "Gmail search query, e.g. 'from:anna is:unread'"},
            "message_id": {"type": "string", "description": "Email id for get/reply"},
            "draft_id": {"type": "string", "description": "Draft id for draft operations"},
            "to": {"type": "array", "items": {"type": "string"}, "description": "Recipient addresses"},
            "cc": {"type": "array", "items": {"type": "string"}},
            "subject": {"type": "string"},
            "body": {"type": "string", "description": "Plain text body"},
            "reply_all": {"type": "boolean", "description": "Reply to all original recipients"},
            "as_draft": {"type": "boolean", "description": "Save the reply as a draft instead of sending"},
            "max_results": {"type": "integer", "minimum": 1, "maximum": 25},
        },
        "required": ["action"],
    },
)

CALENDAR_ACTIONS = ToolDefinition(
    name="calendar_actions",
    description=(
        "Work with the selected Google Calendar: list upcoming events, create, move or delete "
        "events. Use ISO 8601 date-times with timezone offsets."
    ),
    parameters={
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["list", "create", "update", "delete"]},
            "event_id": {"type": "string"},
            "title": {"type": "string"},
            "start_time": {"type": "string", "description": "ISO 8601 start"},
            "end_time": {"type": "string", "description": "ISO 8601 end"},
            "description": {"type": "string"},
            "location": {"type": "string"},
            "attendees": {"type": "array", "items": {"type": "string"}},
            "days": {"type": "integer", "minimum": 1, "maximum": 60, "description": "Days ahead to list"},
            "query": {"type": "string"},
            "max_results": {"type": "integer", "minimum": 1, "maximum": 50},
        },
        "required": ["action"],
    },
)

TODO_ACTIONS = ToolDefinition(
    name="todo_actions",
    description=(
        "Manage the user's todo list: list, create, update, complete or delete todos, and get "
        "stats. Todos can be completed by id or by part of their title."
    ),
    parameters={
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["list", "create", "update", "complete", "delete", "stats"]},
            "todo_id": {"type": "string"},
            "title": {"type": "string"},
            "description": {"type": "string"},
            "category": {"type": "string", "enum": ["Work", "Grocery", "Learning", "Personal", "Others"]},
            "priority": {"type": "string", "enum": ["low", "medium", "high"]},
            "status": {"type": "string", "enum": ["todo", "in_progress", "done"]},
            "due_date": {"type": "string", "description": "ISO 8601 date or date-time"},
            "limit": {"type": "integer", "minimum": 1, "maximum": 100},
        },
        "required": ["action"],
    },
)

LEARNING_ACTIONS = ToolDefinition(
    name="learning_actions",
    description=(
        "Track learning topics across conversations: list or create topics, continue a topic "
        "where the user left off, save progress at the end of a study session, mark topics "
        "complete, and get stats."
    ),
    parameters={
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": [
                    "list_topics", "create_topic", "get_topic", "continue_topic",
                    "save_progress", "complete_topic", "delete_topic", "stats",
                ],
            },
            "topic_id": {"type": "string"},
            "title": {"type": "string"},
            "description": {"type": "string"},
            "category": {"type": "string"},
            "difficulty": {"type": "string", "enum": ["beginner", "intermediate", "advanced"]},
            "status": {"type": "string", "enum": ["not_started", "in_progress", "completed", "paused"]},
            "learning_session_id": {"type": "string"},
            "summary": {"type": "string", "description": "What was covered this session"},
            "concepts_covered": {"type": "array", "items": {"type": "string"}},
            "next_steps": {"type": "string"},
            "progress_percentage": {"type": "integer", "minimum": 0, "maximum": 100},
        },
        "required": ["action"],
    },
)


META_TOOLS: List[ToolDefinition] = [SET_MODE, SELECT_ACCOUNT]

DOMAIN_TOOLS: Dict[str, List[ToolDefinition]] = {
    Mode.EMAIL.value: [EMAIL_ACTIONS],
    Mode.CALENDAR.value: [CALENDAR_ACTIONS],
    Mode.TODO.value: [TODO_ACTIONS],
    Mode.LEARNING.value: [LEARNING_ACTIONS],
    Mode.RELAX.value: [],
}

TOOL_POLICIES: Dict[str, ToolPolicy] = {
    "set_mode": ToolPolicy(auth=AuthLevel.SOFT, meta=True),
    "select_account": ToolPolicy(auth=AuthLevel.HARD, meta=True),
    "email_actions": ToolPolicy(auth=AuthLevel.HARD, account_scoped=True),
    "calendar_actions": ToolPolicy(auth=AuthLevel.HARD, account_scoped=True),
    "todo_actions": ToolPolicy(auth=AuthLevel.HARD, session_optional=True),
    "learning_actions": ToolPolicy(auth=AuthLevel.HARD, session_optional=True),
}

# Anything not listed is treated as the most restrictive
DEFAULT_POLICY = ToolPolicy(auth=AuthLevel.HARD)


def _domain_key(domain) -> Optional[str]:
    return getattr(domain, "value", domain)


def list_domains() -> Set[str]:
    """Domain keys that have a tool group."""
    return set(DOMAIN_TOOLS)


def tools_for(domain) -> List[ToolDefinition]:
    """Tools for a domain; empty for unknown or tool-less domains."""
    return [tool.model_copy(deep=True) for tool in DOMAIN_TOOLS.get(_domain_key(domain), [])]


def meta_tools() -> List[ToolDefinition]:
    """Tools exposed in every mode."""
    return [tool.model_copy(deep=True) for tool in META_TOOLS]


def is_known_tool(tool_name: str) -> bool:
    return tool_name in TOOL_POLICIES


def policy_for(tool_name: str) -> ToolPolicy:
    return TOOL_POLICIES.get(tool_name, DEFAULT_POLICY)


def is_account_scoped_mode(mode) -> bool:
    return _domain_key(mode) in {m.value for m in ACCOUNT_SCOPED_MODES}
