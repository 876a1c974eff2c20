"""Pytest configuration and shared fixtures.

Controllers are exercised against two fakes:
- FakeScheduler: a manual clock; ``advance()`` fires due timers in order
- FakeTransport: an in-memory set of channels and messages with failure
  injection
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from click.testing import CliRunner

from resetkeeper.config import Config, CountdownConfig, GuildConfig
from resetkeeper.models import Display, MessageRef
from resetkeeper.registry import TimerRegistry
from resetkeeper.scheduler import Scheduler, TimerCallback, TimerHandle
from resetkeeper.service import ResetScheduleService
from resetkeeper.transport import (
    BulkDeleteUnsupportedError,
    ChannelInfo,
    GuildInfo,
    MessageNotFoundError,
    RecentMessage,
    RoleInfo,
    TransportError,
)

GUILD_ID = "111"
CHANNEL_ID = "222"
OTHER_CHANNEL_ID = "444"
ROLE_ID = "333"

# One hour before a 00:00:00 UTC-4 reset (04:00Z)
START = datetime(2024, 1, 1, 3, 0, 0, tzinfo=timezone.utc)
RESET_AT = datetime(2024, 1, 1, 4, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Fake Scheduler
# =============================================================================


@dataclass(eq=False)
class FakeJob:
    due: datetime
    interval: float | None
    callback: TimerCallback
    args: tuple[Any, ...]
    handle: TimerHandle
    seq: int


class FakeScheduler(Scheduler):
    """Scheduler driven by a manual clock."""

    def __init__(self, start: datetime = START) -> None:
        self.clock = start
        self.jobs: list[FakeJob] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self.clock

    def schedule(
        self,
        delay: float,
        callback: TimerCallback,
        *args: Any,
        name: str | None = None,
    ) -> TimerHandle:
        return self._add(max(delay, 0), None, callback, args, name)

    def schedule_interval(
        self,
        interval: float,
        callback: TimerCallback,
        *args: Any,
        name: str | None = None,
    ) -> TimerHandle:
        return self._add(interval, interval, callback, args, name)

    def armed(self, prefix: str = "") -> list[str]:
        """Names of timers that are still armed."""
        return [
            job.handle.name
            for job in self.jobs
            if not job.handle.cancelled and job.handle.name.startswith(prefix)
        ]

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that comes due."""
        target = self.clock + timedelta(seconds=seconds)
        while True:
            due = [j for j in self.jobs if j.due <= target and not j.handle.cancelled]
            if not due:
                break
            job = min(due, key=lambda j: (j.due, j.seq))
            self.clock = max(self.clock, job.due)
            if job.interval is None:
                self._discard(job)
            else:
                job.due += timedelta(seconds=job.interval)
            await job.callback(*job.args)
        self.clock = target

    def _add(
        self,
        delay: float,
        interval: float | None,
        callback: TimerCallback,
        args: tuple[Any, ...],
        name: str | None,
    ) -> TimerHandle:
        handle = TimerHandle(name or callback.__name__, recurring=interval is not None)
        job = FakeJob(
            due=self.clock + timedelta(seconds=delay),
            interval=interval,
            callback=callback,
            args=args,
            handle=handle,
            seq=next(self._seq),
        )
        self.jobs.append(job)
        handle.bind(lambda: self._discard(job))
        return handle

    def _discard(self, job: FakeJob) -> None:
        if job in self.jobs:
            self.jobs.remove(job)


# =============================================================================
# Fake Transport
# =============================================================================


@dataclass
class FakeMessage:
    ref: MessageRef
    display: Display | None
    content: str | None = None
    author_is_self: bool = True
    title: str | None = None
    edits: int = 0


@dataclass
class FakeTransport:
    """In-memory transport.

    Set ``failures[operation]`` to an exception to make that operation
    raise it.
    """

    ready: bool = True
    channels: dict[str, ChannelInfo] = field(default_factory=dict)
    guilds: dict[str, GuildInfo] = field(default_factory=dict)
    roles: dict[tuple[str, str], RoleInfo] = field(default_factory=dict)
    messages: dict[str, FakeMessage] = field(default_factory=dict)
    deleted: list[MessageRef] = field(default_factory=list)
    bulk_deletes: list[list[MessageRef]] = field(default_factory=list)
    bulk_delete_unsupported: bool = False
    failures: dict[str, Exception] = field(default_factory=dict)
    _ids: Any = field(default_factory=lambda: itertools.count(1000))

    def add_channel(self, channel_id: str, guild_id: str = GUILD_ID, can_send: bool = True) -> None:
        self.channels[channel_id] = ChannelInfo(
            id=channel_id, name=f"channel-{channel_id}", guild_id=guild_id, can_send=can_send
        )

    def post_foreign(self, channel_id: str, title: str | None = None) -> MessageRef:
        """A message in the channel that the bot did not author."""
        ref = MessageRef(channel_id=channel_id, message_id=str(next(self._ids)))
        self.messages[ref.message_id] = FakeMessage(
            ref=ref, display=None, author_is_self=False, title=title
        )
        return ref

    def post_own(self, channel_id: str, title: str) -> MessageRef:
        """A bot-authored message left over from an earlier run."""
        ref = MessageRef(channel_id=channel_id, message_id=str(next(self._ids)))
        self.messages[ref.message_id] = FakeMessage(ref=ref, display=None, title=title)
        return ref

    def vanish(self, ref: MessageRef) -> None:
        """Delete a message behind the bot's back."""
        self.messages.pop(ref.message_id, None)

    def live(self, channel_id: str | None = None, title_contains: str | None = None) -> list[FakeMessage]:
        return [
            m
            for m in self.messages.values()
            if (channel_id is None or m.ref.channel_id == channel_id)
            and (title_contains is None or (m.title and title_contains in m.title))
        ]

    def get(self, ref: MessageRef | None) -> FakeMessage | None:
        if ref is None:
            return None
        return self.messages.get(ref.message_id)

    def _maybe_fail(self, operation: str) -> None:
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def is_ready(self) -> bool:
        return self.ready

    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None:
        self._maybe_fail("fetch_channel")
        return self.channels.get(channel_id)

    async def fetch_guild(self, guild_id: str) -> GuildInfo | None:
        self._maybe_fail("fetch_guild")
        return self.guilds.get(guild_id)

    async def fetch_guild_role(self, guild_id: str, role_id: str) -> RoleInfo | None:
        self._maybe_fail("fetch_guild_role")
        return self.roles.get((guild_id, role_id))

    async def send(self, channel_id: str, display: Display, content: str | None = None) -> MessageRef:
        self._maybe_fail("send")
        if channel_id not in self.channels:
            raise TransportError(f"Channel {channel_id} not available")
        ref = MessageRef(channel_id=channel_id, message_id=str(next(self._ids)))
        self.messages[ref.message_id] = FakeMessage(
            ref=ref, display=display, content=content, title=display.title
        )
        return ref

    async def edit_message(self, ref: MessageRef, display: Display) -> None:
        self._maybe_fail("edit_message")
        message = self.messages.get(ref.message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {ref.message_id} not found")
        message.display = display
        message.title = display.title
        message.edits += 1

    async def delete_message(self, ref: MessageRef) -> None:
        self._maybe_fail("delete_message")
        if self.messages.pop(ref.message_id, None) is None:
            raise MessageNotFoundError(f"Message {ref.message_id} not found")
        self.deleted.append(ref)

    async def bulk_delete_messages(self, channel_id: str, refs: list[MessageRef]) -> None:
        self._maybe_fail("bulk_delete_messages")
        if self.bulk_delete_unsupported:
            raise BulkDeleteUnsupportedError("messages older than 14 days")
        self.bulk_deletes.append(list(refs))
        for ref in refs:
            if self.messages.pop(ref.message_id, None) is not None:
                self.deleted.append(ref)

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> list[RecentMessage]:
        self._maybe_fail("fetch_recent_messages")
        in_channel = [m for m in self.messages.values() if m.ref.channel_id == channel_id]
        newest_first = sorted(in_channel, key=lambda m: int(m.ref.message_id), reverse=True)
        return [
            RecentMessage(ref=m.ref, author_is_self=m.author_is_self, title=m.title)
            for m in newest_first[:limit]
        ]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def config() -> Config:
    """Config with one guild resetting at 00:00:00 UTC-4."""
    return Config(
        log_level="DEBUG",
        countdown=CountdownConfig(
            reset_time="00:00:00",
            timezone="UTC-4",
            guilds={
                GUILD_ID: GuildConfig(
                    server_name="Test Server",
                    channel_id=CHANNEL_ID,
                    notify_role_id=ROLE_ID,
                )
            },
        ),
    )


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def transport() -> FakeTransport:
    fake = FakeTransport()
    fake.add_channel(CHANNEL_ID)
    fake.add_channel(OTHER_CHANNEL_ID)
    fake.guilds[GUILD_ID] = GuildInfo(id=GUILD_ID, name="Test Guild")
    fake.roles[(GUILD_ID, ROLE_ID)] = RoleInfo(id=ROLE_ID, name="resets", mention=f"<@&{ROLE_ID}>")
    return fake


@pytest.fixture
def registry() -> TimerRegistry:
    return TimerRegistry()


@pytest.fixture
def service(
    config: Config,
    transport: FakeTransport,
    scheduler: FakeScheduler,
    registry: TimerRegistry,
) -> ResetScheduleService:
    svc = ResetScheduleService(config, transport, scheduler, registry=registry)
    svc.init()
    return svc
