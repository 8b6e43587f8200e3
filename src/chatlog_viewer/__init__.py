"""Browse archived IRC logs by date, with search and inline formatting."""

import asyncio
from pathlib import Path

import click
from click_default_group import DefaultGroup

from .backend import HttpBackend
from .config import Config
from .controller import ViewController
from .importer import ImportRunningError, import_logs
from .models import get_session, init_db
from .page import HtmlPage
from .server import serve
from .store import StoreBackend, parse_date


@click.group(cls=DefaultGroup, default="serve", default_if_no_args=True)
@click.version_option(None, "-v", "--version", package_name="chatlog-viewer")
def cli():
    """Browse archived chat logs by date."""
    pass


cli.add_command(serve)


@cli.command("import")
@click.argument("start", required=False)
@click.option(
    "--database-url",
    help="Database connection string (default: DATABASE_URL or config default).",
)
def import_cmd(start, database_url):
    """Import daily logs from START (YYYY-MM-DD) up to today.

    Without START the import continues after the newest stored message.
    """
    config = Config()
    if database_url:
        config.database_url = database_url

    start_date = None
    if start:
        try:
            start_date = parse_date(start)
        except LookupError as e:
            raise click.ClickException(str(e))

    db_session = get_session(init_db(config.database_url))
    try:
        stats = import_logs(
            db_session,
            config.import_url_template,
            config.import_channel,
            start=start_date,
        )
    except (ImportRunningError, LookupError) as e:
        raise click.ClickException(str(e))
    finally:
        db_session.close()

    click.echo(
        f"Imported {stats['count']} messages in {stats['elapsed_time']} ms"
        + (f" ({stats['errors']} days failed)" if stats["errors"] else "")
    )


async def render_page(backend, url, collapse_width=800):
    """Render the viewer page for ``url`` using ``backend``.

    Returns the HTML, the location the view resolved to (if it moved) and the
    notices that were showing.
    """
    page = HtmlPage(collapse_width=collapse_width)
    controller = ViewController(backend, page, collapse_width=collapse_width)
    try:
        await controller.start(url)
        return page.render(), page.location, list(page.notices.values())
    finally:
        controller.close()


@cli.command("render")
@click.argument("url", default="/")
@click.option(
    "-o",
    "--output",
    type=click.Path(),
    help="Output file. If not specified, the HTML is written to stdout.",
)
@click.option(
    "-b",
    "--backend-url",
    help="Backend API base URL, e.g. http://localhost:3030/api (default: local database).",
)
@click.option(
    "--database-url",
    help="Database connection string when rendering from the local database.",
)
def render_cmd(url, output, backend_url, database_url):
    """Render the viewer page for URL (e.g. /2023-10-20 or /search?q=foo) to HTML."""
    config = Config()
    if database_url:
        config.database_url = database_url
    backend_url = backend_url or config.backend_url

    async def run():
        if backend_url:
            backend = HttpBackend(backend_url)
            try:
                return await render_page(backend, url, config.collapse_width)
            finally:
                await backend.aclose()
        db_session = get_session(init_db(config.database_url))
        try:
            return await render_page(
                StoreBackend(db_session), url, config.collapse_width
            )
        finally:
            db_session.close()

    content, location, notices = asyncio.run(run())
    if location is not None:
        click.echo(f"Resolved to {location}", err=True)
    for notice in notices:
        click.echo(f"{notice.kind}: {notice.message}", err=True)

    if output:
        output = Path(output)
        output.write_text(content, encoding="utf-8")
        click.echo(f"Wrote {output.resolve()}")
    else:
        click.echo(content)


def main():
    cli()
