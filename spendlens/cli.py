# spendlens/cli.py
import json
import logging
import os
from datetime import date
from pathlib import Path

import click
from dotenv import load_dotenv

from spendlens.config import load_config
from spendlens.core.categorizer import MAPPING_TABLE, load_mappings
from spendlens.errors import PipelineError
from spendlens.ingest.excel import is_workbook, workbook_to_text
from spendlens.ingest.pipeline import import_statement, process_pending
from spendlens.stores import get_store
from spendlens.summary import build_dashboard_summary


def _configure_logging():
    level = os.getenv("SPENDLENS_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.option(
    '--config', 'config_path',
    default='config.yaml',
    type=click.Path(dir_okay=False),
    help='Path to config.yaml (defaults are used when it does not exist)'
)
@click.option(
    '--env-file', 'env_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='Optional .env file with store credentials and the import API key'
)
@click.option(
    '--db', 'db_path',
    default=None,
    type=click.Path(dir_okay=False),
    help='SQLite database file (overrides config)'
)
@click.pass_context
def main(ctx, config_path, env_file, db_path):
    """
    Import bank statements into canonical transactions and summarise them
    for the dashboard.
    """
    if env_file:
        load_dotenv(env_file)
    _configure_logging()

    cfg = load_config(config_path)
    if db_path:
        cfg['store']['db_path'] = db_path
    ctx.obj = {'config': cfg}


def _store(ctx):
    cfg = ctx.obj['config']
    if 'store' not in ctx.obj:
        ctx.obj['store'] = get_store(cfg)
    return ctx.obj['store']


@main.command('import')
@click.argument('statement', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_cmd(ctx, statement):
    """Import one statement file (delimited text or a spreadsheet)."""
    path = Path(statement)
    if is_workbook(path):
        content = workbook_to_text(path)
    else:
        content = path.read_text(encoding='utf-8-sig', errors='replace')

    try:
        result = import_statement(
            _store(ctx), content, path.name, ctx.obj['config']['import']
        )
    except PipelineError as exc:
        raise click.ClickException(json.dumps(exc.to_payload()))

    payload = result.to_payload()
    click.echo(
        f"Staged {payload['inserted_count']} row(s), "
        f"committed {payload['processed_count']} transaction(s), "
        f"skipped {payload['skipped_count']} from {path.name}."
    )


@main.command('reprocess')
@click.pass_context
def reprocess_cmd(ctx):
    """Transform staging rows that are still marked unprocessed."""
    try:
        result = process_pending(_store(ctx), ctx.obj['config']['import'])
    except PipelineError as exc:
        raise click.ClickException(json.dumps(exc.to_payload()))
    click.echo(
        f"Committed {result.processed_count} transaction(s), "
        f"skipped {result.skipped_count}."
    )


@main.command('summary')
@click.option(
    '--as-of', 'as_of',
    default=None,
    help='Compute windows relative to this ISO date instead of today'
)
@click.pass_context
def summary_cmd(ctx, as_of):
    """Print the dashboard summary as JSON."""
    try:
        ref = date.fromisoformat(as_of) if as_of else None
    except ValueError:
        raise click.BadParameter(f"Invalid date '{as_of}'", param_hint='--as-of')
    try:
        payload = build_dashboard_summary(_store(ctx), ctx.obj['config'], ref)
    except PipelineError as exc:
        raise click.ClickException(json.dumps(exc.to_payload()))
    click.echo(json.dumps(payload, indent=2))


@main.group('mappings')
def mappings_group():
    """Manage payee mapping rules (first matching pattern wins)."""


@mappings_group.command('add')
@click.argument('pattern')
@click.argument('category')
@click.option('--normalized', default=None, help='Canonical payee name to assign')
@click.pass_context
def mappings_add(ctx, pattern, category, normalized):
    row = {'pattern': pattern, 'category': category, 'normalized': normalized}
    try:
        _store(ctx).insert(MAPPING_TABLE, [row])
    except PipelineError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"Added mapping '{pattern}' -> {category}")


@mappings_group.command('list')
@click.pass_context
def mappings_list(ctx):
    try:
        mappings = load_mappings(_store(ctx))
    except PipelineError as exc:
        raise click.ClickException(exc.message)
    for m in mappings:
        click.echo(f"{m.pattern}\t{m.category}\t{m.normalized or ''}")


@main.command('serve')
@click.option('--host', default='127.0.0.1', help='Host to bind')
@click.option('--port', default=8000, type=int, help='Port to bind')
@click.pass_context
def serve_cmd(ctx, host, port):
    """Run the HTTP API."""
    import uvicorn

    from spendlens.web import create_app

    app = create_app(ctx.obj['config'], _store(ctx))
    click.echo(f"SpendLens API running at http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)


if __name__ == '__main__':
    main()
