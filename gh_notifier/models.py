"""Notification items as returned by the GitHub notifications feed.

Items are immutable once fetched. The last-modified timestamp is kept as
the raw RFC 3339 string and parsed on demand so a single malformed entry
fails on its own instead of taking the whole fetch down with it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InvalidTimestamp(ValueError):
    """Raised when a timestamp is not a timezone-aware RFC 3339 instant."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Not a timezone-aware RFC 3339 timestamp: {value!r}")


# https://docs.github.com/en/rest/activity/notifications#about-notification-reasons
class Reason(Enum):
    APPROVAL_REQUESTED = "approval_requested"
    ASSIGN = "assign"
    AUTHOR = "author"
    COMMENT = "comment"
    CI_ACTIVITY = "ci_activity"
    INVITATION = "invitation"
    MANUAL = "manual"
    MEMBER_FEATURE_REQUESTED = "member_feature_requested"
    MENTION = "mention"
    REVIEW_REQUESTED = "review_requested"
    SECURITY_ADVISORY_CREDIT = "security_advisory_credit"
    SECURITY_ALERT = "security_alert"
    STATE_CHANGE = "state_change"
    SUBSCRIBED = "subscribed"
    TEAM_MENTION = "team_mention"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 string into an aware UTC datetime.

    Raises:
        InvalidTimestamp: If the text is malformed or carries no offset.
    """
    raw = text.strip() if isinstance(text, str) else ""
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise InvalidTimestamp(text) from exc
    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise InvalidTimestamp(text)
    return parsed.astimezone(timezone.utc)


def format_timestamp(instant: datetime) -> str:
    if instant.tzinfo is None:
        raise ValueError("Refusing to format a naive datetime")
    return instant.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class Repository:
    repo_id: int
    name: str
    full_name: str


@dataclass(frozen=True)
class Subject:
    title: str
    url: str
    subject_type: str
    latest_comment_url: str | None = None


@dataclass(frozen=True)
class Item:
    """A single notification thread from the remote feed."""
    item_id: str
    reason: Reason
    repository: Repository
    subject: Subject
    updated_at: str

    @property
    def last_modified(self) -> datetime:
        return parse_timestamp(self.updated_at)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Item:
        """Build an Item from one notification object of the REST API.

        Raises KeyError, TypeError or ValueError when the object does not
        match the expected shape (including an unknown reason).
        """
        repo = data["repository"]
        subject = data["subject"]
        return cls(
            item_id=str(data["id"]),
            reason=Reason(data["reason"]),
            repository=Repository(
                repo_id=int(repo["id"]),
                name=repo["name"],
                full_name=repo["full_name"],
            ),
            subject=Subject(
                title=subject["title"],
                url=subject.get("url") or "",
                subject_type=subject["type"],
                latest_comment_url=subject.get("latest_comment_url") or None,
            ),
            updated_at=data["updated_at"],
        )
