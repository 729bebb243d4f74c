"""
Email service - handler behind the `email_actions` tool.

This module provides:
1. Search/get/summary over the selected Gmail account
2. Sending new messages and threaded replies
3. Draft management (create, list, update, delete, send)

The service sits between the tool dispatcher and gmail_client, translating
tool arguments into Gmail operations. Results are plain dicts the voice
agent can read back.
"""
from typing import List, Optional

from voicedesk.integrations.gmail_client import GmailClient
from voicedesk.models.account import Account
from voicedesk.models.email import Email, OutgoingEmail
from voicedesk.services.ai_service import summarize_inbox
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import (
    DraftNotFoundError,
    EmailNotFoundError,
    InvalidRequestError,
    UnknownActionError,
)
from voicedesk.utils.validators import as_bool, clamp_int, email_list, optional_str, require_str

logger = get_logger(__name__)

TOOL_NAME = "email_actions"

REPLY_PREFIX = "Re:"


def reply_subject(subject: str) -> str:
    """Prefix with 'Re:' unless it already is (case-insensitive)."""
    subject = (subject or "").strip()
    if subject.lower().startswith(REPLY_PREFIX.lower()):
        return subject
    return f"{REPLY_PREFIX} {subject}"


def reply_references(original: Email) -> Optional[str]:
    """References chain: the original's References plus its Message-ID."""
    if not original.message_id:
        return original.references
    if original.references:
        return f"{original.references} {original.message_id}"
    return original.message_id


def reply_all_cc(original: Email, own_address: Optional[str]) -> List[str]:
    """
    Cc list for reply-all: original To + Cc, without the original sender and
    the replying account, deduplicated case-insensitively in order.
    """
    excluded = {original.sender_email.lower()}
    if own_address:
        excluded.add(own_address.lower())

    cc = []
    for address in original.to + original.cc:
        key = address.lower()
        if key in excluded:
            continue
        excluded.add(key)
        cc.append(address)
    return cc


def build_reply(original: Email, body: str, own_address: Optional[str] = None, reply_all: bool = False) -> OutgoingEmail:
    """Build a reply threaded onto `original`."""
    return OutgoingEmail(
        to=[original.sender_email],
        cc=reply_all_cc(original, own_address) if reply_all else [],
        subject=reply_subject(original.subject),
        body=body,
        thread_id=original.thread_id,
        in_reply_to=original.message_id,
        references=reply_references(original),
    )


class EmailService:
    """
    Email operations for one connected account.

    Usage:
        service = EmailService(account)
        result = await service.handle("search", {"query": "is:unread"})
        result = await service.handle("reply", {"message_id": "...", "body": "Thanks!"})
    """

    def __init__(self, account: Account, gmail: Optional[GmailClient] = None):
        self.account = account
        self.gmail = gmail or GmailClient(account.access_token)
        self._actions = {
            "search": self.search,
            "get": self.get,
            "summary": self.summary,
            "send": self.send,
            "draft": self.draft,
            "reply": self.reply,
            "list_drafts": self.list_drafts,
            "update_draft": self.update_draft,
            "delete_draft": self.delete_draft,
            "send_draft": self.send_draft,
        }

    async def handle(self, action: Optional[str], args: dict) -> dict:
        handler = self._actions.get(action or "")
        if handler is None:
            raise UnknownActionError(TOOL_NAME, action, list(self._actions))
        return await handler(args)

    # =========================================================================
    # READ
    # =========================================================================

    async def search(self, args: dict) -> dict:
        count = clamp_int(args.get("max_results"), default=10, minimum=1, maximum=25)
        emails = await self.gmail.search_emails(optional_str(args, "query"), count=count)
        return {
            "account": self.account.email,
            "count": len(emails),
            "emails": [email.summary() for email in emails],
        }

    async def get(self, args: dict) -> dict:
        message_id = require_str(args, "message_id")
        email = await self._require_email(message_id)
        return {
            "email": {
                **email.summary(),
                "to": email.to,
                "cc": email.cc,
                "body": email.body,
            },
        }

    async def summary(self, args: dict) -> dict:
        count = clamp_int(args.get("max_results"), default=10, minimum=1, maximum=25)
        emails = await self.gmail.search_emails(optional_str(args, "query"), count=count)
        digest = await summarize_inbox(emails)
        return {"account": self.account.email, "count": len(emails), **digest}

    # =========================================================================
    # SEND / REPLY
    # =========================================================================

    def _outgoing_from_args(self, args: dict) -> OutgoingEmail:
        to = email_list(args.get("to"), "to")
        if not to:
            raise InvalidRequestError("'to' needs at least one recipient", details={"field": "to"})
        return OutgoingEmail(
            to=to,
            cc=email_list(args.get("cc"), "cc"),
            subject=optional_str(args, "subject") or "",
            body=require_str(args, "body"),
        )

    async def send(self, args: dict) -> dict:
        outgoing = self._outgoing_from_args(args)
        sent = await self.gmail.send_message(outgoing)
        logger.info(f"Sent email from {self.account.email}")
        return {"message_id": sent["id"], "thread_id": sent["thread_id"], "to": outgoing.to, "subject": outgoing.subject}

    async def draft(self, args: dict) -> dict:
        outgoing = self._outgoing_from_args(args)
        draft = await self.gmail.create_draft(outgoing)
        return {"draft_id": draft["id"], "to": outgoing.to, "subject": outgoing.subject}

    async def reply(self, args: dict) -> dict:
        """
        Reply to a message, threaded via In-Reply-To/References.

        Only the original sender is addressed unless reply_all is true.
        With as_draft the reply is saved instead of sent.
        """
        message_id = require_str(args, "message_id")
        body = require_str(args, "body")
        original = await self._require_email(message_id)

        outgoing = build_reply(
            original,
            body,
            own_address=self.account.email,
            reply_all=as_bool(args.get("reply_all")),
        )

        result = {
            "to": outgoing.to,
            "cc": outgoing.cc,
            "subject": outgoing.subject,
            "in_reply_to": outgoing.in_reply_to,
        }
        if as_bool(args.get("as_draft")):
            draft = await self.gmail.create_draft(outgoing)
            logger.info(f"Saved reply to {message_id} as draft {draft['id']}")
            return {**result, "draft_id": draft["id"], "sent": False}

        sent = await self.gmail.send_message(outgoing)
        logger.info(f"Sent reply to {message_id}")
        return {**result, "message_id": sent["id"], "thread_id": sent["thread_id"], "sent": True}

    # =========================================================================
    # DRAFTS
    # =========================================================================

    async def list_drafts(self, args: dict) -> dict:
        count = clamp_int(args.get("max_results"), default=10, minimum=1, maximum=25)
        drafts = await self.gmail.list_drafts(count=count)
        return {
            "count": len(drafts),
            "drafts": [
                {"id": d.id, "to": d.to, "subject": d.subject, "snippet": d.snippet}
                for d in drafts
            ],
        }

    async def update_draft(self, args: dict) -> dict:
        """Replace a draft. Fields not given keep their current value."""
        draft_id = require_str(args, "draft_id")
        current = await self.gmail.get_draft(draft_id)
        if current is None:
            raise DraftNotFoundError(draft_id)

        to = email_list(args["to"], "to") if args.get("to") else current.to
        cc = email_list(args["cc"], "cc") if "cc" in args else current.cc
        outgoing = OutgoingEmail(
            to=to,
            cc=cc,
            subject=optional_str(args, "subject") or current.subject,
            body=optional_str(args, "body") or current.body,
            thread_id=current.thread_id,
        )

        updated = await self.gmail.update_draft(draft_id, outgoing)
        if updated is None:
            raise DraftNotFoundError(draft_id)
        return {"draft_id": updated["id"], "to": outgoing.to, "subject": outgoing.subject}

    async def delete_draft(self, args: dict) -> dict:
        draft_id = require_str(args, "draft_id")
        if not await self.gmail.delete_draft(draft_id):
            raise DraftNotFoundError(draft_id)
        return {"draft_id": draft_id, "deleted": True}

    async def send_draft(self, args: dict) -> dict:
        draft_id = require_str(args, "draft_id")
        sent = await self.gmail.send_draft(draft_id)
        if sent is None:
            raise DraftNotFoundError(draft_id)
        return {"draft_id": draft_id, "message_id": sent["id"], "thread_id": sent["thread_id"]}

    async def _require_email(self, message_id: str) -> Email:
        email = await self.gmail.get_email(message_id)
        if email is None:
            raise EmailNotFoundError(message_id)
        return email
