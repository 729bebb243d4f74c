"""
AI service for email intelligence.

Produces the spoken inbox digest behind the email `summary` action. Every
function degrades to a plain, snippet-based answer when the AI call fails:
the voice agent always gets something it can read out.
"""
from typing import List

from voicedesk.integrations.openai_client import complete_json
from voicedesk.models.email import Email
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import AIError

logger = get_logger(__name__)


DIGEST_SYSTEM = """You summarize an inbox for a voice assistant that will read your answer aloud.
Keep it short and conversational. No markdown, no lists of URLs.
Respond ONLY in JSON:
{"summary": "...", "key_emails": [{"index": 1, "reason": "..."}], "suggested_actions": ["..."]}"""


def _format_for_prompt(emails: List[Email]) -> str:
    lines = []
    for i, email in enumerate(emails, start=1):
        lines.append(f"{i}. From: {email.sender_name} <{email.sender_email}>")
        lines.append(f"   Subject: {email.subject}")
        lines.append(f"   Preview: {email.snippet[:150]}")
    return "\n".join(lines)


async def summarize_inbox(emails: List[Email]) -> dict:
    """
    Generate a short digest of the given emails.

    Returns:
        {"summary": str, "key_emails": [...], "suggested_actions": [...], "ai_generated": bool}
    """
    if not emails:
        return {
            "summary": "There are no emails to summarize.",
            "key_emails": [],
            "suggested_actions": [],
            "ai_generated": False,
        }

    messages = [
        {"role": "system", "content": DIGEST_SYSTEM},
        {"role": "user", "content": f"Summarize these emails:\n{_format_for_prompt(emails)}"},
    ]

    try:
        result = await complete_json(messages, max_tokens=400)
    except AIError as e:
        logger.warning(f"AI digest failed, using snippets: {e.message}")
        return get_fallback_digest(emails)

    key_emails = []
    for item in result.get("key_emails", []):
        index = item.get("index")
        if isinstance(index, int) and 1 <= index <= len(emails):
            key_emails.append({**emails[index - 1].summary(), "reason": item.get("reason", "")})

    return {
        "summary": result.get("summary") or f"You have {len(emails)} emails.",
        "key_emails": key_emails,
        "suggested_actions": result.get("suggested_actions", []),
        "ai_generated": True,
    }


def get_fallback_digest(emails: List[Email]) -> dict:
    """Digest built from senders and subjects when AI is unavailable."""
    unread = [e for e in emails if "UNREAD" in e.labels]
    lead = emails[:3]
    mentions = "; ".join(f"{e.sender_name}: {e.subject}" for e in lead)
    return {
        "summary": f"You have {len(emails)} recent emails, {len(unread)} unread. Latest: {mentions}.",
        "key_emails": [e.summary() for e in lead],
        "suggested_actions": [],
        "ai_generated": False,
    }
