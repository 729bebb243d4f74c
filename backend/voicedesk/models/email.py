"""
Email-related Pydantic models.
"""
from pydantic import BaseModel
from typing import Optional, List


class Email(BaseModel):
    """Full email data from Gmail."""
    id: str
    thread_id: str
    sender_name: str
    sender_email: str
    to: List[str] = []
    cc: List[str] = []
    subject: str
    body: str
    snippet: str
    date: str
    labels: List[str] = []
    # RFC 5322 threading headers
    message_id: Optional[str] = None
    references: Optional[str] = None

    def summary(self) -> dict:
        """Short form returned by search/list actions."""
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "from": f"{self.sender_name} <{self.sender_email}>",
            "subject": self.subject,
            "snippet": self.snippet,
            "date": self.date,
            "unread": "UNREAD" in self.labels,
        }


class OutgoingEmail(BaseModel):
    """A message ready to be encoded and sent (or saved as a draft)."""
    to: List[str]
    subject: str
    body: str
    cc: List[str] = []
    bcc: List[str] = []
    thread_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: Optional[str] = None


class Draft(BaseModel):
    """Gmail draft with its decoded message."""
    id: str
    message_id: str
    thread_id: Optional[str] = None
    to: List[str] = []
    cc: List[str] = []
    subject: str = ""
    body: str = ""
    snippet: str = ""
