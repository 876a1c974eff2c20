"""Removal of leftover countdown and announcement messages from a channel."""

from __future__ import annotations

from typing import TYPE_CHECKING, Collection, Iterable

from resetkeeper.logging import get_logger
from resetkeeper.transport import (
    BulkDeleteUnsupportedError,
    MessageNotFoundError,
    RecentMessage,
    TransportError,
)

if TYPE_CHECKING:
    from resetkeeper.models import MessageRef
    from resetkeeper.transport import Transport

log = get_logger("sweeper")


def is_tracking_message(message: RecentMessage, titles: Iterable[str]) -> bool:
    """True if the bot posted the message and its title marks it as a display."""
    if not message.author_is_self or not message.title:
        return False
    return any(title and title in message.title for title in titles)


async def sweep_channel(
    transport: Transport,
    channel_id: str,
    titles: Iterable[str],
    limit: int = 100,
    keep: Collection[MessageRef] = (),
) -> int:
    """Delete bot-authored countdown/announcement messages in a channel.

    Tries a bulk delete first and falls back to deleting one by one when
    the platform refuses (messages older than the bulk-delete age limit).
    Best-effort: failures are logged and never raised.

    Args:
        transport: Message transport.
        channel_id: Channel to sweep.
        titles: Display titles that identify tracking messages.
        limit: How much recent history to scan.
        keep: Messages to leave in place, such as a display just posted.

    Returns:
        Number of messages deleted.
    """
    titles = list(titles)
    try:
        recent = await transport.fetch_recent_messages(channel_id, limit)
    except TransportError as e:
        log.error("sweep_history_failed", channel_id=channel_id, error=str(e))
        return 0

    stale = [
        m.ref for m in recent if m.ref not in keep and is_tracking_message(m, titles)
    ]
    if not stale:
        return 0

    log.info("sweep_found_messages", channel_id=channel_id, count=len(stale))

    try:
        await transport.bulk_delete_messages(channel_id, stale)
        return len(stale)
    except BulkDeleteUnsupportedError as e:
        log.info("sweep_bulk_delete_unsupported", channel_id=channel_id, reason=str(e))
    except TransportError as e:
        log.error("sweep_bulk_delete_failed", channel_id=channel_id, error=str(e))
        return 0

    deleted = 0
    for ref in stale:
        try:
            await transport.delete_message(ref)
            deleted += 1
        except MessageNotFoundError:
            continue
        except TransportError as e:
            log.warning(
                "sweep_delete_failed",
                channel_id=channel_id,
                message_id=ref.message_id,
                error=str(e),
            )
    return deleted
