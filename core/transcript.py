"""
Plain-text transcripts of ticket channels.
"""

from datetime import datetime
from typing import Sequence

from core.messaging import NoticeFile, TranscriptMessage
from models.ticket import Ticket
from models.timestamps import ensure_utc

SEPARATOR = "=" * 50
TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S UTC'


def build_transcript(ticket: Ticket, messages: Sequence[TranscriptMessage],
                     generated_at: datetime) -> str:
    """
    Format a ticket conversation as text.

    Args:
        ticket: Ticket the conversation belongs to
        messages: Channel messages, oldest first
        generated_at: Time stamped in the header

    Returns:
        str: Header, one line per message, footer
    """
    lines = [
        f"Ticket Transcript - {ticket.ticket_id}",
        f"Opened by: {ticket.user_id}",
        f"Created: {ensure_utc(ticket.created_at).strftime(TIMESTAMP_FORMAT)}",
        f"Generated: {ensure_utc(generated_at).strftime(TIMESTAMP_FORMAT)}",
        f"Messages: {len(messages)}",
        SEPARATOR,
        ""
    ]

    for message in messages:
        timestamp = ensure_utc(message.created_at).strftime(TIMESTAMP_FORMAT)
        lines.append(f"[{timestamp}] {message.author_name} ({message.author_id}): {message.content}")

    lines.append("")
    lines.append(SEPARATOR)
    lines.append("End of Transcript")
    return "\n".join(lines)


def transcript_file(ticket: Ticket, messages: Sequence[TranscriptMessage],
                    generated_at: datetime) -> NoticeFile:
    text = build_transcript(ticket, messages, generated_at)
    return NoticeFile(
        filename=f"transcript-{ticket.ticket_id.lower()}.txt",
        data=text.encode('utf-8')
    )
