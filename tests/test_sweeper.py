"""Tests for sweeping leftover displays from a channel."""

import pytest

from resetkeeper.models import MessageRef
from resetkeeper.sweeper import is_tracking_message, sweep_channel
from resetkeeper.transport import RecentMessage, TransportError

from conftest import CHANNEL_ID, OTHER_CHANNEL_ID, FakeTransport

TITLES = {"⏰ Server Reset Countdown", "🔄 Server Reset Complete"}


def recent(title: str | None, own: bool = True) -> RecentMessage:
    return RecentMessage(
        ref=MessageRef(channel_id=CHANNEL_ID, message_id="1"),
        author_is_self=own,
        title=title,
    )


class TestIsTrackingMessage:
    def test_own_countdown_matches(self) -> None:
        assert is_tracking_message(recent("⏰ Server Reset Countdown"), TITLES)

    def test_title_match_is_substring(self) -> None:
        assert is_tracking_message(recent("🔄 Server Reset Complete (EU)"), TITLES)

    def test_foreign_message_ignored(self) -> None:
        assert not is_tracking_message(recent("⏰ Server Reset Countdown", own=False), TITLES)

    def test_untitled_message_ignored(self) -> None:
        assert not is_tracking_message(recent(None), TITLES)

    def test_other_own_message_ignored(self) -> None:
        assert not is_tracking_message(recent("Patch notes"), TITLES)


class TestSweepChannel:
    @pytest.mark.asyncio
    async def test_bulk_deletes_own_displays(self, transport: FakeTransport) -> None:
        countdown = transport.post_own(CHANNEL_ID, "⏰ Server Reset Countdown")
        announcement = transport.post_own(CHANNEL_ID, "🔄 Server Reset Complete")
        foreign = transport.post_foreign(CHANNEL_ID, "⏰ Server Reset Countdown")
        elsewhere = transport.post_own(OTHER_CHANNEL_ID, "⏰ Server Reset Countdown")

        deleted = await sweep_channel(transport, CHANNEL_ID, TITLES)

        assert deleted == 2
        assert len(transport.bulk_deletes) == 1
        assert transport.get(countdown) is None
        assert transport.get(announcement) is None
        assert transport.get(foreign) is not None
        assert transport.get(elsewhere) is not None

    @pytest.mark.asyncio
    async def test_kept_messages_survive(self, transport: FakeTransport) -> None:
        stale = transport.post_own(CHANNEL_ID, "⏰ Server Reset Countdown")
        fresh = transport.post_own(CHANNEL_ID, "⏰ Server Reset Countdown")

        deleted = await sweep_channel(transport, CHANNEL_ID, TITLES, keep={fresh})

        assert deleted == 1
        assert transport.get(stale) is None
        assert transport.get(fresh) is not None

    @pytest.mark.asyncio
    async def test_falls_back_to_single_deletes(self, transport: FakeTransport) -> None:
        transport.bulk_delete_unsupported = True
        refs = [transport.post_own(CHANNEL_ID, "⏰ Server Reset Countdown") for _ in range(3)]

        deleted = await sweep_channel(transport, CHANNEL_ID, TITLES)

        assert deleted == 3
        assert transport.bulk_deletes == []
        assert all(transport.get(r) is None for r in refs)

    @pytest.mark.asyncio
    async def test_nothing_to_sweep(self, transport: FakeTransport) -> None:
        transport.post_foreign(CHANNEL_ID, "hello")

        assert await sweep_channel(transport, CHANNEL_ID, TITLES) == 0
        assert transport.bulk_deletes == []

    @pytest.mark.asyncio
    async def test_history_failure_is_not_fatal(self, transport: FakeTransport) -> None:
        transport.failures["fetch_recent_messages"] = TransportError("forbidden")
        transport.post_own(CHANNEL_ID, "⏰ Server Reset Countdown")

        assert await sweep_channel(transport, CHANNEL_ID, TITLES) == 0

    @pytest.mark.asyncio
    async def test_single_delete_failures_are_skipped(self, transport: FakeTransport) -> None:
        transport.bulk_delete_unsupported = True
        transport.post_own(CHANNEL_ID, "⏰ Server Reset Countdown")
        transport.failures["delete_message"] = TransportError("rate limited")

        assert await sweep_channel(transport, CHANNEL_ID, TITLES) == 0

    @pytest.mark.asyncio
    async def test_respects_history_limit(self, transport: FakeTransport) -> None:
        for _ in range(5):
            transport.post_own(CHANNEL_ID, "⏰ Server Reset Countdown")

        deleted = await sweep_channel(transport, CHANNEL_ID, TITLES, limit=2)

        assert deleted == 2
        assert len(transport.live(CHANNEL_ID)) == 3
