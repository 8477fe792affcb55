"""Command-line entry point for scoped import and export.

Examples:
  lexicarium import --scope words --tenant alice --file words.json
  lexicarium export --scope history --tenant alice --output history.json

Exit status of ``import``: 0 when every record went through, 1 when some
records failed, 2 when the bundle was rejected before any write, 3 when the
store could not be reached.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
import orjson

from Lexicarium.config import load_settings
from Lexicarium.db import dispose_engine
from Lexicarium.errors import MalformedBundle, ScopeMismatch, StoreUnavailable
from Lexicarium.logging import redact_settings, setup_logging
from Lexicarium.transfer.scopes import Scope
from Lexicarium.transfer.service import (
    export_bundle_with_database,
    import_bundle_with_database,
)

_SCOPE_CHOICES = [s.layout.short_name for s in Scope] + [s.value for s in Scope]

EXIT_PARTIAL = 1
EXIT_REJECTED = 2
EXIT_UNAVAILABLE = 3


def _echo_json(payload: dict) -> None:
    click.echo(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())


def _run(coro):
    async def _main():
        try:
            return await coro
        finally:
            await dispose_engine()

    return asyncio.run(_main())


@click.group()
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.pass_context
def app(ctx: click.Context, log_level: str | None) -> None:
    """Import and export vocabulary data one scope at a time."""
    overrides = {}
    if log_level:
        level = log_level.upper()
        overrides = {"logging_level": level, "logging_console": level, "logging_file": level}
    settings = load_settings().model_copy(update=overrides)
    setup_logging(settings)
    ctx.obj = settings


@app.command("import")
@click.option("--scope", "scope_name", required=True, type=click.Choice(_SCOPE_CHOICES))
@click.option("--tenant", required=True, help="Identifier of the importing user.")
@click.option(
    "--file",
    "bundle_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--on-mismatch",
    type=click.Choice(["reject", "warn"]),
    default=None,
    help="What to do when the bundle declares another scope.",
)
@click.pass_obj
def import_command(settings, scope_name: str, tenant: str, bundle_path: Path, on_mismatch):
    """Merge a scoped bundle into the tenant's data."""
    if on_mismatch:
        transfer = settings.transfer.model_copy(update={"on_scope_mismatch": on_mismatch})
        settings = settings.model_copy(update={"transfer": transfer})
    data = bundle_path.read_bytes()
    try:
        result = _run(
            import_bundle_with_database(Scope.parse(scope_name), data, tenant, settings=settings)
        )
    except (MalformedBundle, ScopeMismatch) as exc:
        _echo_json({"ok": False, "rejected": True, "error": str(exc)})
        raise SystemExit(EXIT_REJECTED) from exc
    except StoreUnavailable as exc:
        _echo_json({"ok": False, "error": str(exc)})
        raise SystemExit(EXIT_UNAVAILABLE) from exc
    _echo_json(result.summary())
    if not result.ok:
        raise SystemExit(EXIT_PARTIAL)


@app.command("export")
@click.option("--scope", "scope_name", required=True, type=click.Choice(_SCOPE_CHOICES))
@click.option("--tenant", required=True, help="Identifier of the exporting user.")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    default=None,
    help="Write the bundle here instead of stdout.",
)
@click.pass_obj
def export_command(settings, scope_name: str, tenant: str, output: Path | None):
    """Write the tenant's records of one scope as a bundle."""
    try:
        payload = _run(
            export_bundle_with_database(Scope.parse(scope_name), tenant, settings=settings)
        )
    except StoreUnavailable as exc:
        _echo_json({"ok": False, "error": str(exc)})
        raise SystemExit(EXIT_UNAVAILABLE) from exc
    if output is None:
        click.echo(payload.decode())
    else:
        output.write_bytes(payload)
        click.echo(f"wrote {len(payload)} bytes to {output}", err=True)


@app.command("show-config")
@click.pass_obj
def show_config(settings) -> None:
    """Print the effective settings with secrets masked."""
    _echo_json(redact_settings(settings))


def main() -> None:  # pragma: no cover
    app(prog_name="lexicarium")


if __name__ == "__main__":  # pragma: no cover
    main()
