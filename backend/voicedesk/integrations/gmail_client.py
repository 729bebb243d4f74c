"""
Gmail API client integration.

This module handles direct communication with Gmail API:
1. Search and fetch messages (list + get message details)
2. Send messages, including threaded replies
3. Create, list, update, delete and send drafts
4. Parse Gmail's complex response format into clean objects

Gmail API Reference: https://developers.google.com/gmail/api/reference/rest
"""
import asyncio
import base64
import re
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.utils import getaddresses
from typing import List, Optional, Tuple

import httpx

from voicedesk.config import get_settings
from voicedesk.models.email import Email, OutgoingEmail, Draft
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import GmailError, AuthError, UpstreamTimeoutError

logger = get_logger(__name__)

# Gmail API base URL
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"


def _headers_of(payload: dict) -> dict:
    """Lower-cased header name -> value."""
    return {h["name"].lower(): h["value"] for h in payload.get("headers", [])}


def parse_sender(from_header: str) -> Tuple[str, str]:
    """
    Parse 'From' header into name and email.

    Handles formats:
    - "John Doe <john@example.com>"
    - "john@example.com"
    - "<john@example.com>"

    Returns:
        Tuple of (name, email)
    """
    # Try to match "Name <email>" format
    match = re.match(r'^"?([^"<]+)"?\s*<(.+)>$', from_header.strip())
    if match:
        return match.group(1).strip(), match.group(2).strip()

    # Try to match "<email>" format
    match = re.match(r'^<(.+)>$', from_header.strip())
    if match:
        email = match.group(1).strip()
        return email, email

    # Assume entire string is email
    email = from_header.strip()
    return email, email


def parse_address_list(header: str) -> List[str]:
    """Extract bare addresses from a To/Cc header."""
    if not header:
        return []
    return [addr for _, addr in getaddresses([header]) if addr]


def decode_body(data: str) -> str:
    """
    Decode base64url-encoded body data.

    Gmail uses URL-safe base64 encoding.
    """
    try:
        # Replace URL-safe characters
        data = data.replace("-", "+").replace("_", "/")
        # Add padding if needed
        padding = 4 - len(data) % 4
        if padding != 4:
            data += "=" * padding
        decoded = base64.b64decode(data)
        return decoded.decode("utf-8", errors="replace")
    except Exception as e:
        logger.warning(f"Failed to decode body: {e}")
        return ""


def strip_html(html: str) -> str:
    """
    Strip HTML tags to get plain text.

    Simple implementation - removes tags and decodes entities.
    """
    # Remove style and script blocks
    html = re.sub(r'<style[^>]*>.*?</style>', '', html, flags=re.DOTALL | re.IGNORECASE)
    html = re.sub(r'<script[^>]*>.*?</script>', '', html, flags=re.DOTALL | re.IGNORECASE)

    # Remove HTML tags
    html = re.sub(r'<[^>]+>', ' ', html)

    # Decode common entities
    html = html.replace("&nbsp;", " ")
    html = html.replace("&amp;", "&")
    html = html.replace("&lt;", "<")
    html = html.replace("&gt;", ">")
    html = html.replace("&quot;", '"')

    # Clean up whitespace
    html = re.sub(r'\s+', ' ', html)

    return html.strip()


def extract_body(payload: dict) -> str:
    """
    Extract email body from payload.

    Gmail stores body in various places:
    - Simple emails: payload.body.data
    - Multipart: payload.parts[*].body.data

    We prefer plain text over HTML.
    """
    # Try direct body
    if payload.get("body", {}).get("data"):
        body = decode_body(payload["body"]["data"])
        return strip_html(body) if payload.get("mimeType") == "text/html" else body

    parts = payload.get("parts", [])

    # First, look for plain text
    for part in parts:
        if part.get("mimeType") == "text/plain" and part.get("body", {}).get("data"):
            return decode_body(part["body"]["data"])

    # Fall back to HTML
    for part in parts:
        if part.get("mimeType") == "text/html" and part.get("body", {}).get("data"):
            return strip_html(decode_body(part["body"]["data"]))

    # Check nested parts
    for part in parts:
        if "parts" in part:
            result = extract_body(part)
            if result:
                return result

    return ""


def _parse_date(date_str: str, internal_date: Optional[str]) -> str:
    """
    Parse date into ISO format string.

    Uses internalDate (milliseconds since epoch) when present.
    """
    if internal_date:
        try:
            timestamp = int(internal_date) / 1000
            return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
        except (ValueError, TypeError):
            pass

    return date_str or datetime.now(timezone.utc).isoformat()


def parse_email_message(message: dict) -> Email:
    """
    Parse Gmail API message into Email object.

    Gmail message structure is complex. Headers are in a list,
    body may be nested in parts, and content is base64 encoded.

    Args:
        message: Raw Gmail API message response

    Returns:
        Clean Email object
    """
    payload = message.get("payload", {})
    headers = _headers_of(payload)

    sender_name, sender_email = parse_sender(headers.get("from", "Unknown"))

    return Email(
        id=message["id"],
        thread_id=message.get("threadId", message["id"]),
        sender_name=sender_name,
        sender_email=sender_email,
        to=parse_address_list(headers.get("to", "")),
        cc=parse_address_list(headers.get("cc", "")),
        subject=headers.get("subject", "(No Subject)"),
        body=extract_body(payload),
        snippet=message.get("snippet", ""),
        date=_parse_date(headers.get("date", ""), message.get("internalDate")),
        labels=message.get("labelIds", []),
        message_id=headers.get("message-id"),
        references=headers.get("references"),
    )


def parse_draft(draft: dict) -> Draft:
    """Parse a Gmail draft resource (format=full) into a Draft."""
    message = draft.get("message", {})
    payload = message.get("payload", {})
    headers = _headers_of(payload)

    return Draft(
        id=draft["id"],
        message_id=message.get("id", ""),
        thread_id=message.get("threadId"),
        to=parse_address_list(headers.get("to", "")),
        cc=parse_address_list(headers.get("cc", "")),
        subject=headers.get("subject", ""),
        body=extract_body(payload),
        snippet=message.get("snippet", ""),
    )


def build_raw_message(outgoing: OutgoingEmail) -> dict:
    """
    Encode an outgoing message into a Gmail `message` resource.

    Threading headers are only set when present so fresh messages don't
    carry empty In-Reply-To/References.
    """
    message = MIMEText(outgoing.body)
    message["to"] = ", ".join(outgoing.to)
    if outgoing.cc:
        message["cc"] = ", ".join(outgoing.cc)
    if outgoing.bcc:
        message["bcc"] = ", ".join(outgoing.bcc)
    message["subject"] = outgoing.subject
    if outgoing.in_reply_to:
        message["In-Reply-To"] = outgoing.in_reply_to
    if outgoing.references:
        message["References"] = outgoing.references

    resource = {"raw": base64.urlsafe_b64encode(message.as_bytes()).decode("utf-8")}
    if outgoing.thread_id:
        resource["threadId"] = outgoing.thread_id
    return resource


class GmailClient:
    """
    Gmail API client for email operations.

    Usage:
        client = GmailClient(access_token)
        emails = await client.search_emails("from:john", count=5)
        await client.send_message(OutgoingEmail(to=[...], subject=..., body=...))
        draft = await client.create_draft(outgoing)
    """

    def __init__(self, access_token: str):
        """
        Initialize Gmail client with access token.

        Args:
            access_token: Valid Google OAuth access token with Gmail scopes
        """
        settings = get_settings()
        self.access_token = access_token
        self.timeout = settings.upstream_timeout_seconds
        self.retries = settings.upstream_retries
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: dict = None,
        params: dict = None,
    ) -> Optional[dict]:
        """
        Make an authenticated request to Gmail API.

        Handles common error cases:
        - 401: Token expired/invalid
        - 403: Permission denied
        - 404: Returns None, callers decide what "missing" means
        - 429 / 5xx: Retried with backoff, then GmailError
        - Timeouts: Retried, then UpstreamTimeoutError

        Returns:
            Response JSON dict ({} for empty bodies), or None for 404
        """
        url = f"{GMAIL_API_BASE}{endpoint}"

        for attempt in range(self.retries + 1):
            async with httpx.AsyncClient() as client:
                try:
                    response = await client.request(
                        method=method,
                        url=url,
                        headers=self.headers,
                        json=json_data,
                        params=params,
                        timeout=self.timeout,
                    )
                except httpx.TimeoutException:
                    if attempt < self.retries:
                        logger.warning("Gmail API timeout, retrying...")
                        continue
                    logger.error(f"Gmail API: timed out after {self.retries} retries")
                    raise UpstreamTimeoutError("Gmail")
                except httpx.RequestError as e:
                    if attempt < self.retries:
                        wait_time = 2 ** attempt
                        logger.warning(f"Gmail API connection error, retrying in {wait_time}s...")
                        await asyncio.sleep(wait_time)
                        continue
                    logger.error(f"Gmail API: Request failed after {self.retries} retries - {e}")
                    raise GmailError("Gmail service unavailable. Please try again later.")

            # Handle success (including 204)
            if 200 <= response.status_code < 300:
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            # Handle transient errors (Rate limit, Server error)
            if response.status_code == 429 or response.status_code >= 500:
                if attempt < self.retries:
                    wait_time = 2 ** attempt  # Exponential backoff
                    logger.warning(f"Gmail API transient error {response.status_code}, retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    continue

            if response.status_code == 404:
                return None

            if response.status_code == 401:
                logger.warning("Gmail API: Token expired or invalid")
                raise AuthError("Gmail access token expired")

            if response.status_code == 403:
                logger.warning("Gmail API: Permission denied")
                raise GmailError("Gmail permission denied. Please re-authorize the account.")

            logger.error(f"Gmail API error: {response.status_code} - {response.text}")
            raise GmailError(f"Gmail API error: {response.status_code}")

        raise GmailError("Gmail service unavailable. Please try again later.")

    # =========================================================================
    # PROFILE
    # =========================================================================

    async def get_profile(self) -> dict:
        """Mailbox profile: emailAddress, messagesTotal, threadsTotal, historyId."""
        profile = await self._make_request("GET", "/profile")
        if profile is None:
            raise GmailError("Gmail mailbox not found for this account.")
        return profile

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def search_emails(self, query: Optional[str] = None, count: int = 10) -> List[Email]:
        """
        Search messages, newest first.

        Gmail API flow:
        1. List message IDs (lightweight)
        2. Get full message details for each ID
        3. Parse into Email objects

        Args:
            query: Gmail search query (e.g., "from:john", "is:unread"). Inbox if omitted.
            count: Number of emails to fetch

        Returns:
            List of Email objects
        """
        logger.info(f"Searching {count} emails (query: {query})")

        params = {"maxResults": count}
        if query:
            params["q"] = query
        else:
            params["labelIds"] = "INBOX"

        list_response = await self._make_request("GET", "/messages", params=params) or {}
        messages = list_response.get("messages", [])

        if not messages:
            logger.info("No emails found")
            return []

        details = await asyncio.gather(
            *(self.get_email(msg["id"]) for msg in messages),
            return_exceptions=True,
        )

        emails = []
        for msg, result in zip(messages, details):
            if isinstance(result, Exception):
                logger.warning(f"Failed to fetch email {msg['id']}: {result}")
                continue
            if result:
                emails.append(result)

        logger.info(f"Fetched {len(emails)} emails successfully")
        return emails

    async def get_email(self, email_id: str) -> Optional[Email]:
        """
        Get a specific email by ID.

        Returns:
            Email object or None if not found
        """
        response = await self._make_request("GET", f"/messages/{email_id}", params={"format": "full"})
        if not response:
            return None
        return parse_email_message(response)

    async def send_message(self, outgoing: OutgoingEmail) -> dict:
        """
        Send a message.

        Returns:
            Dict with id and threadId of the sent message
        """
        logger.info(f"Sending email to: {', '.join(outgoing.to)}")

        response = await self._make_request("POST", "/messages/send", json_data=build_raw_message(outgoing))
        if response is None:
            raise GmailError("Gmail rejected the message.")

        logger.info(f"Email sent successfully, ID: {response.get('id')}")
        return {"id": response.get("id"), "thread_id": response.get("threadId")}

    # =========================================================================
    # DRAFTS
    # =========================================================================

    async def create_draft(self, outgoing: OutgoingEmail) -> dict:
        """Save a message as a draft. Returns {id, message_id}."""
        response = await self._make_request(
            "POST", "/drafts", json_data={"message": build_raw_message(outgoing)}
        )
        if response is None:
            raise GmailError("Gmail rejected the draft.")

        logger.info(f"Draft created, ID: {response.get('id')}")
        return {"id": response.get("id"), "message_id": response.get("message", {}).get("id")}

    async def list_drafts(self, count: int = 10) -> List[Draft]:
        """List drafts with their decoded content."""
        list_response = await self._make_request("GET", "/drafts", params={"maxResults": count}) or {}
        drafts = list_response.get("drafts", [])

        results = await asyncio.gather(*(self.get_draft(d["id"]) for d in drafts), return_exceptions=True)

        parsed = []
        for draft, result in zip(drafts, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to fetch draft {draft['id']}: {result}")
                continue
            if result:
                parsed.append(result)
        return parsed

    async def get_draft(self, draft_id: str) -> Optional[Draft]:
        response = await self._make_request("GET", f"/drafts/{draft_id}", params={"format": "full"})
        if not response:
            return None
        return parse_draft(response)

    async def update_draft(self, draft_id: str, outgoing: OutgoingEmail) -> Optional[dict]:
        """Replace a draft's content. Returns None if the draft is gone."""
        response = await self._make_request(
            "PUT",
            f"/drafts/{draft_id}",
            json_data={"id": draft_id, "message": build_raw_message(outgoing)},
        )
        if response is None:
            return None
        return {"id": response.get("id"), "message_id": response.get("message", {}).get("id")}

    async def delete_draft(self, draft_id: str) -> bool:
        """Permanently delete a draft. Returns False if it doesn't exist."""
        response = await self._make_request("DELETE", f"/drafts/{draft_id}")
        return response is not None

    async def send_draft(self, draft_id: str) -> Optional[dict]:
        """Send an existing draft. Returns None if the draft is gone."""
        response = await self._make_request("POST", "/drafts/send", json_data={"id": draft_id})
        if response is None:
            return None
        logger.info(f"Draft {draft_id} sent, message ID: {response.get('id')}")
        return {"id": response.get("id"), "thread_id": response.get("threadId")}
