"""Message transport for ResetKeeper.

The scheduling core talks to Discord only through the Transport protocol,
which keeps it decoupled from discord.py and lets tests run against an
in-memory fake. DiscordTransport is the production implementation.

Failures are reported with typed exceptions:
- MessageNotFoundError: the target message was deleted externally
- BulkDeleteUnsupportedError: bulk delete refused (e.g. messages older
  than Discord's 14-day bulk-delete limit); callers fall back to
  per-message deletes
- TransportError: anything else the remote side rejected
"""

from __future__ import annotations

from typing import Protocol

import discord
from pydantic import BaseModel, ConfigDict

from resetkeeper.logging import get_logger
from resetkeeper.models import Display, MessageRef

log = get_logger("transport")

# Discord JSON error code for "message too old to bulk delete"
BULK_DELETE_TOO_OLD = 50034

# Discord rejects bulk deletes of more than 100 messages
BULK_DELETE_MAX = 100


# =============================================================================
# Errors
# =============================================================================


class TransportError(Exception):
    """Raised when the remote messaging surface fails."""


class MessageNotFoundError(TransportError):
    """Raised when an edit or delete targets a message that no longer exists.

    A channel that was deleted or hidden from the bot counts as well.
    """


class BulkDeleteUnsupportedError(TransportError):
    """Raised when a bulk delete is refused and per-message deletes are required."""


# =============================================================================
# Value Types
# =============================================================================


class ChannelInfo(BaseModel):
    """A resolved text channel."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    guild_id: str | None = None
    can_send: bool = True


class GuildInfo(BaseModel):
    """A resolved guild."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class RoleInfo(BaseModel):
    """A resolved guild role."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    mention: str


class RecentMessage(BaseModel):
    """A message from channel history, reduced to what the sweeper needs."""

    model_config = ConfigDict(frozen=True)

    ref: MessageRef
    author_is_self: bool
    title: str | None = None


# =============================================================================
# Protocol
# =============================================================================


class Transport(Protocol):
    """Remote messaging operations used by the controllers."""

    def is_ready(self) -> bool: ...

    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None: ...

    async def fetch_guild(self, guild_id: str) -> GuildInfo | None: ...

    async def fetch_guild_role(self, guild_id: str, role_id: str) -> RoleInfo | None: ...

    async def send(
        self, channel_id: str, display: Display, content: str | None = None
    ) -> MessageRef: ...

    async def edit_message(self, ref: MessageRef, display: Display) -> None: ...

    async def delete_message(self, ref: MessageRef) -> None: ...

    async def bulk_delete_messages(self, channel_id: str, refs: list[MessageRef]) -> None: ...

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> list[RecentMessage]: ...


# =============================================================================
# Discord Implementation
# =============================================================================


def to_embed(display: Display) -> discord.Embed:
    """Convert a Display into a discord.py embed."""
    embed = discord.Embed(
        title=display.title,
        description=display.description or None,
        color=display.color,
    )
    if display.thumbnail:
        embed.set_thumbnail(url=display.thumbnail)
    for field in display.fields:
        embed.add_field(name=field.name, value=field.value, inline=field.inline)
    if display.footer:
        embed.set_footer(text=display.footer)
    return embed


class DiscordTransport:
    """Transport over a connected discord.py client.

    Attributes:
        client: The discord.py client (usually the bot itself).
    """

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    def is_ready(self) -> bool:
        return self.client.is_ready()

    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None:
        channel = await self._resolve_channel(channel_id)
        if channel is None:
            return None

        guild = getattr(channel, "guild", None)
        can_send = True
        if guild is not None and guild.me is not None:
            permissions = channel.permissions_for(guild.me)
            can_send = permissions.send_messages and permissions.embed_links

        return ChannelInfo(
            id=str(channel.id),
            name=getattr(channel, "name", str(channel.id)),
            guild_id=str(guild.id) if guild is not None else None,
            can_send=can_send,
        )

    async def fetch_guild(self, guild_id: str) -> GuildInfo | None:
        guild = await self._resolve_guild(guild_id)
        if guild is None:
            return None
        return GuildInfo(id=str(guild.id), name=guild.name)

    async def fetch_guild_role(self, guild_id: str, role_id: str) -> RoleInfo | None:
        guild = await self._resolve_guild(guild_id)
        if guild is None:
            return None
        role = guild.get_role(int(role_id))
        if role is None:
            return None
        return RoleInfo(id=str(role.id), name=role.name, mention=role.mention)

    async def send(
        self, channel_id: str, display: Display, content: str | None = None
    ) -> MessageRef:
        channel = await self._require_channel(channel_id)
        try:
            message = await channel.send(content=content or None, embed=to_embed(display))
        except discord.HTTPException as e:
            raise TransportError(f"Failed to send to channel {channel_id}: {e}") from e
        return MessageRef(channel_id=str(channel_id), message_id=str(message.id))

    async def edit_message(self, ref: MessageRef, display: Display) -> None:
        channel = await self._message_channel(ref)
        partial = channel.get_partial_message(int(ref.message_id))
        try:
            await partial.edit(embed=to_embed(display))
        except discord.NotFound as e:
            raise MessageNotFoundError(f"Message {ref.message_id} not found") from e
        except discord.HTTPException as e:
            raise TransportError(f"Failed to edit message {ref.message_id}: {e}") from e

    async def delete_message(self, ref: MessageRef) -> None:
        channel = await self._message_channel(ref)
        partial = channel.get_partial_message(int(ref.message_id))
        try:
            await partial.delete()
        except discord.NotFound as e:
            raise MessageNotFoundError(f"Message {ref.message_id} not found") from e
        except discord.HTTPException as e:
            raise TransportError(f"Failed to delete message {ref.message_id}: {e}") from e

    async def bulk_delete_messages(self, channel_id: str, refs: list[MessageRef]) -> None:
        if not refs:
            return
        if len(refs) > BULK_DELETE_MAX:
            raise BulkDeleteUnsupportedError(f"Cannot bulk delete {len(refs)} messages")

        channel = await self._require_channel(channel_id)
        objects = [discord.Object(id=int(ref.message_id)) for ref in refs]
        try:
            await channel.delete_messages(objects)
        except discord.ClientException as e:
            raise BulkDeleteUnsupportedError(str(e)) from e
        except discord.HTTPException as e:
            if e.code == BULK_DELETE_TOO_OLD:
                raise BulkDeleteUnsupportedError(str(e)) from e
            raise TransportError(f"Bulk delete failed in channel {channel_id}: {e}") from e

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> list[RecentMessage]:
        channel = await self._require_channel(channel_id)
        own_id = self.client.user.id if self.client.user else None

        recent: list[RecentMessage] = []
        try:
            async for message in channel.history(limit=limit):
                recent.append(
                    RecentMessage(
                        ref=MessageRef(channel_id=str(channel_id), message_id=str(message.id)),
                        author_is_self=own_id is not None and message.author.id == own_id,
                        title=message.embeds[0].title if message.embeds else None,
                    )
                )
        except discord.HTTPException as e:
            raise TransportError(f"Failed to read history of channel {channel_id}: {e}") from e
        return recent

    async def _resolve_channel(self, channel_id: str) -> discord.abc.GuildChannel | None:
        channel = self.client.get_channel(int(channel_id))
        if channel is None:
            try:
                channel = await self.client.fetch_channel(int(channel_id))
            except (discord.NotFound, discord.Forbidden):
                return None
            except discord.HTTPException as e:
                raise TransportError(f"Failed to fetch channel {channel_id}: {e}") from e

        if not isinstance(channel, discord.abc.Messageable):
            log.warning("channel_not_text_based", channel_id=channel_id)
            return None
        return channel

    async def _require_channel(self, channel_id: str) -> discord.TextChannel:
        channel = await self._resolve_channel(channel_id)
        if channel is None:
            raise TransportError(f"Channel {channel_id} not available")
        return channel

    async def _message_channel(self, ref: MessageRef) -> discord.TextChannel:
        """Resolve the channel holding ``ref``; raise MessageNotFoundError if it is gone."""
        channel = await self._resolve_channel(ref.channel_id)
        if channel is None:
            raise MessageNotFoundError(f"Channel {ref.channel_id} no longer available")
        return channel

    async def _resolve_guild(self, guild_id: str) -> discord.Guild | None:
        guild = self.client.get_guild(int(guild_id))
        if guild is not None:
            return guild
        try:
            return await self.client.fetch_guild(int(guild_id))
        except (discord.NotFound, discord.Forbidden):
            return None
        except discord.HTTPException as e:
            raise TransportError(f"Failed to fetch guild {guild_id}: {e}") from e
