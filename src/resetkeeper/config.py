"""Configuration loading and validation for ResetKeeper."""

from __future__ import annotations

import os
from datetime import time
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from resetkeeper.resettime import parse_reset_time, parse_utc_offset


class GuildConfig(BaseModel):
    """Per-guild countdown settings. Unset values inherit the countdown defaults."""

    server_name: str | None = None
    reset_time: str | None = None
    timezone: str | None = None
    channel_id: str | None = None
    notify_role_id: str | None = None

    @field_validator("reset_time")
    @classmethod
    def validate_reset_time(cls, v: str | None) -> str | None:
        """Validate reset_time is HH:MM:SS."""
        if v is not None:
            parse_reset_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        """Validate timezone is a fixed UTC offset label."""
        if v is not None:
            parse_utc_offset(v)
            return v.strip().upper()
        return v

    @field_validator("channel_id", "notify_role_id", mode="before")
    @classmethod
    def coerce_snowflake(cls, v: object) -> object:
        """Discord IDs are often written unquoted in YAML."""
        if isinstance(v, int):
            return str(v)
        return v


class CountdownConfig(BaseModel):
    """Countdown and reset-announcement configuration."""

    server_name: str = "Server"
    reset_time: str = "00:00:00"
    timezone: str = "UTC-4"
    update_interval_seconds: float = Field(60, gt=0)
    reset_update_interval_seconds: float = Field(60, gt=0)
    auto_delete_hours: float = Field(3, gt=0)
    imminent_threshold_seconds: int = Field(5, ge=0, le=59)
    settle_delay_seconds: float = Field(1, ge=0)
    sweep_history_limit: int = Field(100, ge=1, le=100)
    autostart: bool = True
    guilds: dict[str, GuildConfig] = Field(default_factory=dict)

    @field_validator("reset_time")
    @classmethod
    def validate_reset_time(cls, v: str) -> str:
        """Validate the default reset_time is HH:MM:SS."""
        parse_reset_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the default timezone is a fixed UTC offset label."""
        parse_utc_offset(v)
        return v.strip().upper()

    @field_validator("guilds", mode="before")
    @classmethod
    def coerce_guild_keys(cls, v: object) -> object:
        """Guild IDs used as unquoted YAML keys load as ints."""
        if isinstance(v, dict):
            return {str(k): (g if g is not None else {}) for k, g in v.items()}
        return v


class GuildSettings(BaseModel):
    """Resolved settings for one guild, defaults applied."""

    model_config = ConfigDict(frozen=True)

    guild_id: str
    server_name: str
    reset_time: time
    utc_offset_hours: int
    timezone_label: str
    channel_id: str | None = None
    notify_role_id: str | None = None

    @property
    def reset_time_label(self) -> str:
        return self.reset_time.strftime("%H:%M:%S")


class Config(BaseModel):
    """Root configuration for ResetKeeper."""

    log_level: str = "INFO"
    log_json: bool = True
    language_file: Path | None = None

    countdown: CountdownConfig = Field(default_factory=CountdownConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is valid."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @property
    def discord_token(self) -> str | None:
        """Get Discord token from environment."""
        return os.environ.get("DISCORD_TOKEN")

    def get_guild_settings(self, guild_id: str) -> GuildSettings | None:
        """Resolve settings for a guild.

        Args:
            guild_id: Discord guild ID.

        Returns:
            Settings with defaults applied, or None if the guild is not configured.
        """
        guild = self.countdown.guilds.get(str(guild_id))
        if guild is None:
            return None

        defaults = self.countdown
        timezone_label = guild.timezone or defaults.timezone
        return GuildSettings(
            guild_id=str(guild_id),
            server_name=guild.server_name or defaults.server_name,
            reset_time=parse_reset_time(guild.reset_time or defaults.reset_time),
            utc_offset_hours=parse_utc_offset(timezone_label),
            timezone_label=timezone_label,
            channel_id=guild.channel_id,
            notify_role_id=guild.notify_role_id,
        )

    def configured_guilds(self) -> list[GuildSettings]:
        """Settings for every guild that has a channel configured."""
        resolved = [self.get_guild_settings(guild_id) for guild_id in self.countdown.guilds]
        return [s for s in resolved if s is not None and s.channel_id]

    def set_guild_channel(self, guild_id: str, channel_id: str) -> GuildConfig:
        """Point a guild at a new announcement channel (in memory).

        Args:
            guild_id: Discord guild ID.
            channel_id: Channel that should receive displays.

        Returns:
            The updated guild configuration.
        """
        current = self.countdown.guilds.get(str(guild_id), GuildConfig())
        updated = current.model_copy(update={"channel_id": str(channel_id)})
        self.countdown.guilds[str(guild_id)] = updated
        return updated

    def set_guild_notify_role(self, guild_id: str, role_id: str) -> GuildConfig:
        """Set the role mentioned in a guild's reset announcements (in memory)."""
        current = self.countdown.guilds.get(str(guild_id), GuildConfig())
        updated = current.model_copy(update={"notify_role_id": str(role_id)})
        self.countdown.guilds[str(guild_id)] = updated
        return updated

    def save(self, config_path: Path | str) -> None:
        """Write the configuration back to a YAML file."""
        data = self.model_dump(mode="json", exclude_none=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    @classmethod
    def load(cls, config_path: Path | str = Path("config.yaml")) -> "Config":
        """Load configuration from YAML file with env var overlay.

        Args:
            config_path: Path to YAML configuration file.

        Returns:
            Validated Config instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        # Environment variable overrides
        if "RESETKEEPER_LOG_LEVEL" in os.environ:
            yaml_config["log_level"] = os.environ["RESETKEEPER_LOG_LEVEL"]
        if "RESETKEEPER_LOG_JSON" in os.environ:
            yaml_config["log_json"] = os.environ["RESETKEEPER_LOG_JSON"].lower() == "true"
        if "RESETKEEPER_LANGUAGE_FILE" in os.environ:
            yaml_config["language_file"] = os.environ["RESETKEEPER_LANGUAGE_FILE"]

        return cls.model_validate(yaml_config)

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration, falling back to defaults if file not found.

        Args:
            config_path: Optional path to YAML configuration file.

        Returns:
            Config instance (from file or defaults).
        """
        if config_path is None:
            for path in [Path("config.yaml"), Path("config.yml")]:
                if path.exists():
                    return cls.load(path)
            return cls()

        try:
            return cls.load(config_path)
        except FileNotFoundError:
            return cls()
