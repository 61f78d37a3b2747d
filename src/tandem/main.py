"""
Tandem entry point.

This file handles startup concerns (arg-parsing, env setup, logging, credentials and behavior
loading) and launches the appropriate interface (API or CLI).
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from tandem.agent.behavior_loader import load_configured_behavior
from tandem.config import settings
from tandem.core.errors import (
    ConfigurationError,
    RegistryLoadError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # SDK clients log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _prepare_files_dir(path: str) -> Path:
    files_dir = Path(path).resolve()
    if not files_dir.exists():
        files_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Created directory: %s", files_dir)
    else:
        logger.info("Using existing directory: %s", files_dir)
    if not files_dir.is_dir() or not os.access(files_dir, os.W_OK):
        raise ConfigurationError(f"Files directory is not writable: {files_dir}")
    return files_dir


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the Tandem application.

    Parses the command line, initializes logging, validates the configuration and starts either
    the HTTP server or the interactive shell.  Configuration faults exit with status 1.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the Tandem two-model coding orchestrator")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the HTTP server or the interactive shell (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--files-dir",
        default=settings.FILES_DIR,
        help="Directory the file tools are confined to (default: %(default)s)",
    )
    parser.add_argument(
        "--no-feedback",
        action="store_true",
        help="Report tool results to the user instead of feeding them back to the model",
    )
    args = parser.parse_args(argv)

    # Override settings with command-line arguments
    settings.LOG_LEVEL = args.log_level
    if args.no_feedback:
        settings.FEEDBACK_ENABLED = False

    _init_logging(settings.LOG_LEVEL)

    try:
        settings.FILES_DIR = str(_prepare_files_dir(args.files_dir))
        settings.validate_credentials()
        behavior = load_configured_behavior(settings)
    except (ConfigurationError, RegistryLoadError) as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logger.info("Starting Tandem [%s mode, provider=%s]", args.mode, settings.PROVIDER)
    logger.debug(
        "Settings: %s",
        settings.model_dump(exclude={"PROGRAMMER_API_KEY", "CONTEXT_API_KEY"}),
    )

    if args.mode == "api":
        # Lazy import to avoid web dependencies if not needed
        from tandem.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(port=settings.API_PORT, behavior=behavior)
    else:
        from tandem.client.cli import run_cli  # pylint: disable=import-outside-toplevel

        run_cli(behavior=behavior)


if __name__ == "__main__":
    main()
