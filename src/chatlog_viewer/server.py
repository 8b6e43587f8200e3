"""Flask web server for browsing chat logs with scheduled imports."""

import asyncio
from datetime import datetime, timezone

import click
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from flask import Blueprint, Flask, Response, jsonify, redirect, request
from sqlalchemy.orm import scoped_session, sessionmaker

from .backend import HttpBackend
from .config import Config
from .controller import ViewController
from .importer import ImportRunningError, import_logs
from .models import init_db
from .page import HtmlPage
from .store import (
    DatesCache,
    QueryError,
    StoreBackend,
    latest_logs,
    logs_for_date,
    parse_date,
    search_messages,
)


def format_plaintext(messages):
    """Format messages as ``[HH:MM:SS] <author> body`` lines."""
    return "".join(
        f"[{m.timestamp.strftime('%H:%M:%S')}] <{m.author}> {m.body}\n"
        for m in messages
    )


def create_app(config: Config):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config["LOG_CONFIG"] = config

    # Initialize database
    engine = init_db(config.database_url)
    session_factory = sessionmaker(bind=engine)
    app.config["DB_SESSION"] = scoped_session(session_factory)
    app.config["DATES_CACHE"] = dates_cache = DatesCache()

    def message_output(messages):
        if request.args.get("format") == "plaintext":
            return Response(format_plaintext(messages), mimetype="text/plain")
        return jsonify([m.to_record().to_json() for m in messages])

    # JSON API consumed by the viewer
    api = Blueprint("api", __name__, url_prefix="/api")

    @api.route("/dates")
    def dates():
        """List dates that have logs, newest first."""
        return jsonify(dates_cache.get(app.config["DB_SESSION"]()))

    @api.route("/logs/latest")
    def logs_latest():
        """Logs for the most recent date."""
        return message_output(latest_logs(app.config["DB_SESSION"]()))

    @api.route("/logs/<date>")
    def logs(date):
        """Logs for one date."""
        try:
            day = parse_date(date)
        except LookupError:
            return jsonify({"message": "NOT_FOUND"}), 404
        return message_output(logs_for_date(app.config["DB_SESSION"](), day))

    @api.route("/search")
    def search():
        """Search all logs."""
        query = request.args.get("q")
        if query is None:
            return jsonify({"message": "Search parameter is missing in URL"}), 400
        messages = search_messages(
            app.config["DB_SESSION"](), query, config.search_limit
        )
        return message_output(messages)

    app.register_blueprint(api)

    @app.errorhandler(QueryError)
    def handle_query_error(e):
        return jsonify({"message": str(e)}), 400

    @app.errorhandler(ImportRunningError)
    def handle_import_running(e):
        return jsonify({"message": str(e)}), 400

    # Viewer pages, rendered through the view controller
    def viewer_backend():
        if config.backend_url:
            return HttpBackend(config.backend_url)
        return StoreBackend(
            app.config["DB_SESSION"](), dates_cache, config.search_limit
        )

    async def run_view(page, url, action, args):
        backend = viewer_backend()
        controller = ViewController(
            backend,
            page,
            notice_timeout=config.notice_seconds,
            collapse_width=config.collapse_width,
        )
        try:
            await controller.start(url)
            if action is not None:
                await getattr(controller, action)(*args)
            return page.render()
        finally:
            controller.close()
            if isinstance(backend, HttpBackend):
                await backend.aclose()

    def view(url, action=None, *args):
        page = HtmlPage(collapse_width=config.collapse_width)
        content = asyncio.run(run_view(page, url, action, args))
        if page.location is not None:
            return redirect(page.location)
        return content

    def current_url():
        url = request.path
        if request.query_string:
            url += "?" + request.query_string.decode("utf-8", errors="replace")
        return url

    @app.route("/")
    def index():
        """Show the latest logs."""
        return view(current_url())

    @app.route("/search")
    def search_view():
        """Show search results grouped by date."""
        return view(current_url())

    @app.route("/jump")
    def jump():
        """Go to the date picked in the date input."""
        start = request.args.get("from", "")
        return view(f"/{start}", "jump", request.args.get("date", ""))

    @app.route("/<date>")
    def date_view(date):
        """Show the logs for one date."""
        return view(current_url())

    @app.route("/<date>/next")
    def next_view(date):
        """Go one date newer."""
        return view(f"/{date}", "next")

    @app.route("/<date>/previous")
    def previous_view(date):
        """Go one date older."""
        return view(f"/{date}", "previous")

    def trigger_import(start=None):
        db_session = app.config["DB_SESSION"]()
        try:
            stats = import_logs(
                db_session,
                config.import_url_template,
                config.import_channel,
                start=start,
            )
        except LookupError as e:
            return jsonify({"message": str(e)}), 400
        finally:
            dates_cache.invalidate()
        return jsonify(
            {
                "status": "success",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **stats,
            }
        )

    @app.route("/import")
    def import_latest():
        """Import logs since the newest stored message."""
        return trigger_import()

    @app.route("/import/<date>")
    def import_from(date):
        """Import logs starting at a date."""
        try:
            start = parse_date(date)
        except LookupError as e:
            return jsonify({"message": str(e)}), 400
        return trigger_import(start)

    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Clean up database sessions."""
        app.config["DB_SESSION"].remove()

    return app


def run_scheduled_import(app):
    """Run a scheduled import in the background."""
    with app.app_context():
        config = app.config["LOG_CONFIG"]
        db_session = app.config["DB_SESSION"]()
        try:
            print(f"Running scheduled import at {datetime.now()}")
            stats = import_logs(
                db_session, config.import_url_template, config.import_channel
            )
            print(f"Import complete: {stats}")
        except (ImportRunningError, LookupError) as e:
            print(f"Import skipped: {e}")
        except Exception as e:
            print(f"Import error: {e}")
        finally:
            app.config["DATES_CACHE"].invalidate()
            db_session.close()


def start_scheduler(app, imports=True):
    """Start the background jobs: dates cache expiry and, optionally, imports."""
    config = app.config["LOG_CONFIG"]
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        func=app.config["DATES_CACHE"].invalidate,
        trigger=IntervalTrigger(minutes=config.dates_cache_minutes),
        id="invalidate_dates",
        name="Invalidate cached dates",
        replace_existing=True,
    )
    if imports:
        scheduler.add_job(
            func=lambda: run_scheduled_import(app),
            trigger=IntervalTrigger(minutes=config.import_interval_minutes),
            id="import_logs",
            name="Import chat logs",
            replace_existing=True,
        )
    scheduler.start()
    return scheduler


@click.command("serve")
@click.option(
    "--host",
    default=None,
    help="Server host (default: from config or 127.0.0.1)",
)
@click.option(
    "--port",
    type=int,
    default=None,
    help="Server port (default: from config or 3030)",
)
@click.option(
    "--backend-url",
    default=None,
    help="Render the viewer from a remote backend instead of the local database.",
)
@click.option(
    "--no-scheduler",
    is_flag=True,
    help="Disable automatic log imports",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Run in debug mode",
)
def serve(host, port, backend_url, no_scheduler, debug):
    """
    Start the chat log viewer server.

    The server imports new logs on a schedule and provides a web interface
    and a JSON API (under /api) to browse them.

    Configuration is done via environment variables:
    - DATABASE_URL: Database connection string
    - SERVER_HOST: Server host (default: 127.0.0.1)
    - SERVER_PORT: Server port (default: 3030)
    - BACKEND_URL: Remote backend for the viewer pages (optional)
    - DATES_CACHE_MINUTES: How long the date list is cached (default: 5)
    - SEARCH_LIMIT: Maximum number of search results (default: 1000)
    - IMPORT_INTERVAL_MINUTES: How often to import (default: 60)
    - IMPORT_URL_TEMPLATE: Where daily logs are downloaded from
    - IMPORT_CHANNEL: Channel name stored with imported messages
    """
    # Load configuration
    config = Config()

    # Override from command line if provided
    if host:
        config.server_host = host
    if port:
        config.server_port = port
    if backend_url:
        config.backend_url = backend_url

    # Create Flask app
    app = create_app(config)

    scheduler = start_scheduler(app, imports=not no_scheduler)
    if not no_scheduler:
        click.echo(
            f"Scheduler started. Importing every {config.import_interval_minutes} minutes."
        )

        # Run initial import on startup
        click.echo("Running initial import...")
        run_scheduled_import(app)

    try:
        click.echo(f"Starting server at http://{config.server_host}:{config.server_port}")
        click.echo(f"Database: {config.database_url}")
        if config.backend_url:
            click.echo(f"Viewer backend: {config.backend_url}")
        app.run(host=config.server_host, port=config.server_port, debug=debug)
    except KeyboardInterrupt:
        click.echo("\nServer stopped.")
    finally:
        scheduler.shutdown()
