"""Command-line interface for ResetKeeper."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import click

from resetkeeper import __version__
from resetkeeper.config import Config
from resetkeeper.logging import get_logger, setup_logging
from resetkeeper.models import utcnow
from resetkeeper.resettime import (
    calculate_time_remaining,
    format_duration,
    parse_reset_time,
    parse_utc_offset,
)

log = get_logger("cli")


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config).",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="Output logs as JSON or human-readable format (overrides config).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    log_json: bool | None,
) -> None:
    """ResetKeeper - daily reset countdowns and announcements for Discord."""
    ctx.ensure_object(dict)

    config = Config.load_or_default(config_file)
    ctx.obj["config"] = config
    ctx.obj["config_file"] = config_file

    # CLI overrides config
    effective_log_level = log_level or config.log_level
    effective_log_json = log_json if log_json is not None else config.log_json

    setup_logging(json_output=effective_log_json, level=effective_log_level)


@cli.command()
def version() -> None:
    """Print version information."""
    click.echo(f"resetkeeper {__version__}")


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Start the Discord bot.

    Starts countdowns for configured guilds and serves the admin slash
    commands. Channel changes made with /announcement-channel are saved
    back to the configuration file when one was given.

    Requires DISCORD_TOKEN environment variable to be set.
    Use Ctrl+C or send SIGTERM for graceful shutdown.
    """
    from resetkeeper.bot import run_bot

    config = ctx.obj["config"]

    if not config.discord_token:
        click.echo("Error: DISCORD_TOKEN environment variable not set", err=True)
        click.echo("Set DISCORD_TOKEN to your bot token to connect to Discord.", err=True)
        raise SystemExit(1)

    log.info("serve_command_invoked", guilds=len(config.countdown.guilds))

    try:
        asyncio.run(run_bot(config, ctx.obj["config_file"]))
    except KeyboardInterrupt:
        # Normally handled by the SIGINT handler
        log.info("shutdown_requested_keyboard")
    except Exception as e:
        log.error("serve_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@cli.command(name="next-reset")
@click.option("-g", "--guild", "guild_id", default=None, help="Configured guild ID.")
@click.option("--time", "reset_time", default=None, help="Reset time HH:MM:SS (ad hoc).")
@click.option("--timezone", "timezone_label", default=None, help="Offset like UTC-4 (ad hoc).")
@click.option(
    "--now",
    "now_text",
    default=None,
    help="Evaluate at this ISO-8601 instant instead of the current time.",
)
@click.pass_context
def next_reset(
    ctx: click.Context,
    guild_id: str | None,
    reset_time: str | None,
    timezone_label: str | None,
    now_text: str | None,
) -> None:
    """Print the next reset instant and the time left until it.

    Uses a configured guild's schedule, or --time/--timezone over the
    configured defaults.
    """
    config: Config = ctx.obj["config"]

    try:
        if guild_id is not None:
            settings = config.get_guild_settings(guild_id)
            if settings is None:
                click.echo(f"Error: guild {guild_id} is not configured", err=True)
                raise SystemExit(1)
            at = settings.reset_time
            offset = settings.utc_offset_hours
            label = settings.timezone_label
        else:
            at = parse_reset_time(reset_time or config.countdown.reset_time)
            label = timezone_label or config.countdown.timezone
            offset = parse_utc_offset(label)

        now = _parse_now(now_text) if now_text else utcnow()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    remaining = calculate_time_remaining(
        at,
        offset,
        now,
        imminent_seconds=config.countdown.imminent_threshold_seconds,
    )
    click.echo(f"Reset time: {at.strftime('%H:%M:%S')} {label}")
    click.echo(f"Next reset: {remaining.next_reset.isoformat()}")
    click.echo(
        f"Remaining: {format_duration(remaining.hours, remaining.minutes)} "
        f"({remaining.hours}h {remaining.minutes}m {remaining.seconds}s)"
    )
    if remaining.is_imminent:
        click.echo("Reset is imminent")


def _parse_now(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="check")
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=True, path_type=Path),
    default="config.yaml",
    help="Path to configuration file.",
)
def config_check(config_file: Path) -> None:
    """Validate configuration file."""
    try:
        cfg = Config.load(config_file)
        click.echo(f"Configuration valid: {config_file}")
        click.echo(f"  Log level: {cfg.log_level}")
        click.echo(f"  Default reset: {cfg.countdown.reset_time} {cfg.countdown.timezone}")
        click.echo(f"  Auto-delete after: {cfg.countdown.auto_delete_hours}h")

        if cfg.language_file:
            click.echo(f"  Language file: {cfg.language_file}")

        configured = cfg.configured_guilds()
        click.echo(f"  Guilds: {len(cfg.countdown.guilds)} ({len(configured)} with a channel)")
        for settings in configured:
            click.echo(
                f"    {settings.guild_id}: {settings.server_name} "
                f"{settings.reset_time_label} {settings.timezone_label} -> {settings.channel_id}"
            )

    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
