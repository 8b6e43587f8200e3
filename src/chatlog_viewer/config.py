"""Configuration management for the log viewer."""

import os


def _int_env(name, default):
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        raise ValueError(f"{name} must be an integer")


class Config:
    """Configuration for the log viewer server."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        # Database configuration
        self.database_url = os.environ.get(
            "DATABASE_URL", "postgresql://localhost/chatlogs"
        )

        # Server configuration
        self.server_host = os.environ.get("SERVER_HOST", "127.0.0.1")
        self.server_port = _int_env("SERVER_PORT", "3030")

        # Remote backend for the viewer pages (optional, defaults to the local database)
        self.backend_url = os.environ.get("BACKEND_URL")

        # How long the list of dates is cached (in minutes)
        self.dates_cache_minutes = _int_env("DATES_CACHE_MINUTES", "5")

        # Maximum number of search results
        self.search_limit = _int_env("SEARCH_LIMIT", "1000")

        # Importer configuration
        self.import_interval_minutes = _int_env("IMPORT_INTERVAL_MINUTES", "60")
        self.import_url_template = os.environ.get(
            "IMPORT_URL_TEMPLATE", "https://logs.fomalhaut.me/download/{date}.log"
        )
        self.import_channel = os.environ.get("IMPORT_CHANNEL", "#cc.ru")

        # Viewer behaviour
        self.notice_seconds = _int_env("NOTICE_SECONDS", "3")
        self.collapse_width = _int_env("COLLAPSE_WIDTH", "800")

    def __repr__(self):
        """Return a string representation of the config."""
        return (
            f"<Config(database_url='{self.database_url[:20]}...', "
            f"server_host='{self.server_host}', "
            f"server_port={self.server_port}, "
            f"backend_url={self.backend_url!r}, "
            f"import_interval_minutes={self.import_interval_minutes})>"
        )
