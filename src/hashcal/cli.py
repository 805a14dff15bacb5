"""Command line interface: encode, inspect and expand calendar links."""

from __future__ import annotations

import json
import sys
from datetime import date, datetime, time
from pathlib import Path
from typing import IO
from zoneinfo import ZoneInfo

import click

from hashcal import __version__
from hashcal.config import ConfigError, HashcalConfig, load_config
from hashcal.core.codec import decode, encode, peek_is_encrypted
from hashcal.core.errors import DecodeError, WrongPasswordError
from hashcal.core.logging import configure_logging
from hashcal.core.models import CalendarState, export_json, normalize_state
from hashcal.core.recurrence import expand, group_occurrences
from hashcal.core.timezones import is_valid_zone

EXIT_CORRUPT = 1
EXIT_WRONG_PASSWORD = 2


def _token_from(value: str) -> str:
    """Accept either a bare token or a full link and return the token."""
    if "#" in value:
        return value.split("#", 1)[1]
    return value


def _decode_or_exit(token: str, password: str | None, config: HashcalConfig) -> CalendarState:
    try:
        return decode(_token_from(token), password, iterations=config.codec.kdf_iterations)
    except WrongPasswordError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_WRONG_PASSWORD)
    except DecodeError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_CORRUPT)


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from exc


def _parse_zone(value: str) -> ZoneInfo:
    if not is_valid_zone(value):
        raise click.BadParameter(f"unknown timezone {value!r}", param_hint="--tz")
    return ZoneInfo(value)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to hashcal.toml (or a directory containing it)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """hashcal: a calendar stored entirely in a link fragment."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(EXIT_CORRUPT)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=config.logging.log_file,
    )
    ctx.obj = config


@cli.command("encode")
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@click.option("--password", default=None, help="Encrypt the token with this password")
@click.pass_obj
def encode_cmd(config: HashcalConfig, source: IO[str], password: str | None) -> None:
    """Encode a JSON state export (file or stdin) into a fragment token."""
    try:
        raw = json.load(source)
    except json.JSONDecodeError as exc:
        click.echo(f"Error: invalid JSON: {exc}", err=True)
        sys.exit(EXIT_CORRUPT)
    state = normalize_state(raw)
    if state.is_empty:
        click.echo("Calendar is empty; nothing to encode (the link needs no fragment).", err=True)
        return
    click.echo(encode(state, password, iterations=config.codec.kdf_iterations))


@cli.command("decode")
@click.argument("token")
@click.option("--password", default=None, help="Password for encrypted tokens")
@click.pass_obj
def decode_cmd(config: HashcalConfig, token: str, password: str | None) -> None:
    """Decode a token (or full link) and print the state as JSON."""
    click.echo(export_json(_decode_or_exit(token, password, config)))


@cli.command("peek")
@click.argument("token")
def peek_cmd(token: str) -> None:
    """Report whether a token is password protected."""
    click.echo("encrypted" if peek_is_encrypted(_token_from(token)) else "plain")


@cli.command("expand")
@click.argument("token")
@click.option("--start", "start_day", required=True, help="First day (YYYY-MM-DD)")
@click.option("--end", "end_day", required=True, help="Day after the last day (YYYY-MM-DD)")
@click.option("--tz", "tz_name", default=None, help="IANA timezone (defaults to config)")
@click.option("--password", default=None, help="Password for encrypted tokens")
@click.pass_obj
def expand_cmd(
    config: HashcalConfig,
    token: str,
    start_day: str,
    end_day: str,
    tz_name: str | None,
    password: str | None,
) -> None:
    """List the occurrences in [START, END), grouped by day."""
    tz = _parse_zone(tz_name or config.timezone)
    start = datetime.combine(_parse_day(start_day), time.min, tzinfo=tz)
    end = datetime.combine(_parse_day(end_day), time.min, tzinfo=tz)
    if end <= start:
        raise click.BadParameter("--end must be after --start")

    state = _decode_or_exit(token, password, config)
    by_day = group_occurrences(expand(state.events, start, end, tz=tz), tz)
    if not by_day:
        click.echo("No events.")
        return
    for day, occurrences in by_day.items():
        click.echo(day.isoformat())
        for occ in occurrences:
            label = "All day" if occ.is_all_day else occ.start.astimezone(tz).strftime("%H:%M")
            click.echo(f"  {label:<8} {occ.title}  [{state.color_for(occ.color_index)}]")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
