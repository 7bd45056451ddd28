"""Configuration and logging setup for procdash."""

import argparse
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from textual.logging import TextualHandler

from procdash.backend import HttpBackend, ProcessBackend
from procdash.local import LocalBackend
from procdash.monitor import DEFAULT_INTERVAL
from procdash.view import DEFAULT_PAGE_SIZE, PAGE_SIZES

DEFAULT_API_BASE = "http://localhost:8080"
BACKENDS = ("http", "local")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigError(ValueError):
    """Invalid configuration value."""


@dataclass(slots=True)
class DashboardConfig:
    """Runtime settings for the dashboard."""

    backend: str = "http"
    api_base: str = DEFAULT_API_BASE
    refresh_interval: float = DEFAULT_INTERVAL
    auto_refresh: bool = True
    page_size: int = DEFAULT_PAGE_SIZE
    request_timeout: float | None = 10.0
    export_path: Path = Path("processes.csv")
    log_file: Path | None = None
    log_level: str = "WARNING"

    def validate(self) -> None:
        """Raise ConfigError if any setting is out of range."""
        if self.backend not in BACKENDS:
            raise ConfigError(f"backend must be one of {', '.join(BACKENDS)}, got {self.backend!r}")
        if not self.api_base.startswith(("http://", "https://")):
            raise ConfigError(f"api_base must be an http(s) URL, got {self.api_base!r}")
        if self.refresh_interval <= 0:
            raise ConfigError("refresh_interval must be positive")
        if self.page_size not in PAGE_SIZES:
            raise ConfigError(f"page_size must be one of {PAGE_SIZES}, got {self.page_size}")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"Unknown log level {self.log_level!r}")


def build_parser(defaults: DashboardConfig) -> argparse.ArgumentParser:
    """Command-line parser seeded with environment-derived defaults."""
    ap = argparse.ArgumentParser(prog="procdash", description="procdash - live process dashboard")
    ap.add_argument("--backend", choices=BACKENDS, default=defaults.backend, help="process data source")
    ap.add_argument("--api-base", default=defaults.api_base, help="process API root URL")
    ap.add_argument("--interval", type=float, default=defaults.refresh_interval, help="seconds between refreshes")
    ap.add_argument(
        "--no-auto-refresh",
        dest="auto_refresh",
        action="store_false",
        default=defaults.auto_refresh,
        help="start with auto-refresh disabled",
    )
    ap.add_argument("--page-size", type=int, default=defaults.page_size, choices=PAGE_SIZES)
    ap.add_argument("--timeout", type=float, default=defaults.request_timeout, help="HTTP request timeout")
    ap.add_argument("--export-path", type=Path, default=defaults.export_path, help="CSV export destination")
    ap.add_argument("--log-file", type=Path, default=defaults.log_file)
    ap.add_argument("--log-level", default=defaults.log_level)
    return ap


def config_from_env(environ: Mapping[str, str]) -> DashboardConfig:
    """Defaults overridden by ``PROCDASH_*`` environment variables."""
    config = DashboardConfig()
    if "PROCDASH_BACKEND" in environ:
        config.backend = environ["PROCDASH_BACKEND"]
    if "PROCDASH_API_BASE" in environ:
        config.api_base = environ["PROCDASH_API_BASE"]
    if "PROCDASH_LOG_LEVEL" in environ:
        config.log_level = environ["PROCDASH_LOG_LEVEL"]
    if "PROCDASH_LOG_FILE" in environ:
        config.log_file = Path(environ["PROCDASH_LOG_FILE"])
    if "PROCDASH_INTERVAL" in environ:
        try:
            config.refresh_interval = float(environ["PROCDASH_INTERVAL"])
        except ValueError as exc:
            raise ConfigError(f"PROCDASH_INTERVAL is not a number: {environ['PROCDASH_INTERVAL']!r}") from exc
    return config


def load_config(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> DashboardConfig:
    """
    Build the configuration from the environment and command line.

    Command-line flags win over environment variables, which win over the
    built-in defaults.
    """
    defaults = config_from_env(os.environ if environ is None else environ)
    args = build_parser(defaults).parse_args(argv)
    config = DashboardConfig(
        backend=args.backend,
        api_base=args.api_base,
        refresh_interval=args.interval,
        auto_refresh=args.auto_refresh,
        page_size=args.page_size,
        request_timeout=args.timeout,
        export_path=args.export_path,
        log_file=args.log_file,
        log_level=args.log_level.upper(),
    )
    config.validate()
    return config


def build_backend(config: DashboardConfig) -> ProcessBackend:
    """Instantiate the backend selected by ``config``."""
    if config.backend == "local":
        return LocalBackend()
    return HttpBackend(config.api_base, timeout=config.request_timeout)


def configure_logging(config: DashboardConfig) -> logging.Handler:
    """
    Route procdash logs to a file or to the textual devtools console.

    The terminal belongs to the TUI, so nothing is written to stderr.
    """
    handler: logging.Handler
    if config.log_file is not None:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        handler = TextualHandler()
    root = logging.getLogger("procdash")
    root.setLevel(config.log_level.upper())
    root.addHandler(handler)
    return handler
