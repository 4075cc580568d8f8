"""
Messaging collaborator interface.

The workflow engine and the reminder scheduler talk to the chat platform
only through :class:`MessagingService`. Every call returns a
:class:`DeliveryResult` instead of raising, so callers decide whether a
failure is reported to a waiting user or recorded and skipped.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple


def format_date(value: date) -> str:
    """Format a date the way notices show it, e.g. ``March 5, 2025``."""
    return f"{value.strftime('%B')} {value.day}, {value.year}"


class NoticeColor(Enum):
    """Semantic colors; renderers map them to platform colors."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"
    PRIMARY = "primary"


class ActionStyle(Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUCCESS = "success"
    DANGER = "danger"
    LINK = "link"


@dataclass(frozen=True)
class NoticeAction:
    """
    A button attached to a notice.

    Exactly one of ``custom_id`` (routed back to the bot) or ``url``
    (opened by the client) is set.
    """
    label: str
    custom_id: Optional[str] = None
    url: Optional[str] = None
    style: ActionStyle = ActionStyle.SECONDARY
    emoji: Optional[str] = None

    def __post_init__(self):
        if (self.custom_id is None) == (self.url is None):
            raise ValueError("NoticeAction needs exactly one of custom_id or url")


@dataclass(frozen=True)
class NoticeFile:
    """A file attached to a notice."""
    filename: str
    data: bytes


@dataclass(frozen=True)
class TranscriptMessage:
    """One message read back from a channel's history."""
    created_at: datetime
    author_id: int
    author_name: str
    content: str


@dataclass
class Notice:
    """A presentation-neutral message: title, body, fields and actions."""
    title: str
    description: str = ""
    color: NoticeColor = NoticeColor.INFO
    fields: List[Tuple[str, str, bool]] = field(default_factory=list)
    actions: List[NoticeAction] = field(default_factory=list)
    content: Optional[str] = None
    footer: Optional[str] = None
    files: List[NoticeFile] = field(default_factory=list)

    def add_field(self, name: str, value: str, inline: bool = True) -> 'Notice':
        self.fields.append((name, value, inline))
        return self


@dataclass
class DeliveryResult:
    """Outcome of one messaging call."""
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> 'DeliveryResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> 'DeliveryResult':
        return cls(ok=False, error=error)


class MessagingService(ABC):
    """
    Directory and messaging operations the core depends on.

    Implementations must not raise for "not found" or "unreachable"; those
    come back as a failed :class:`DeliveryResult`.
    """

    @abstractmethod
    async def create_private_channel(self, guild_id: int, name: str,
                                     category_id: Optional[int],
                                     member_ids: Sequence[int],
                                     role_ids: Sequence[int],
                                     topic: Optional[str] = None) -> DeliveryResult:
        """
        Create a channel visible only to the given members and roles.

        Args:
            guild_id: Guild to create the channel in
            name: Channel name
            category_id: Parent category, if any
            member_ids: Members granted access
            role_ids: Roles granted access
            topic: Channel topic

        Returns:
            DeliveryResult: ``value`` is the new channel id on success
        """
        pass

    @abstractmethod
    async def send_channel_notice(self, channel_id: int, notice: Notice) -> DeliveryResult:
        pass

    @abstractmethod
    async def send_direct_notice(self, user_id: int, notice: Notice) -> DeliveryResult:
        pass

    @abstractmethod
    async def fetch_user(self, user_id: int) -> DeliveryResult:
        """
        Look up a user.

        Returns:
            DeliveryResult: ``ok`` with ``value=None`` when the user does not
                exist; a failure only when the lookup itself could not run
        """
        pass

    @abstractmethod
    async def delete_channel(self, channel_id: int, reason: Optional[str] = None) -> DeliveryResult:
        pass

    @abstractmethod
    async def fetch_channel_history(self, channel_id: int) -> DeliveryResult:
        """
        Read a channel's messages, oldest first.

        Returns:
            DeliveryResult: ``value`` is a list of :class:`TranscriptMessage`
        """
        pass
