# main.py
import logging
from typing import Optional

from .config import get_settings
from .exceptions import DarkiboxError
from .fs import Fs, new_fs


# Libraries whose request-level chatter drowns out the pacer and retry logs.
QUIET_LOGGERS = ("urllib3", "requests", "concurrent.futures")
LOG_FORMAT = "%(asctime)s - %(threadName)s - %(levelname)s - %(message)s"


def setup_logging(settings=None):
    """
    Routes all darkibox logging through the root logger, to the console and
    to LOG_FILE. Request threads are named in every line so concurrent
    transfers can be told apart.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    known_level = isinstance(level, int)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level if known_level else logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [logging.StreamHandler()]
    try:
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    except OSError as e:
        root_logger.error(f"Cannot write darkibox log file {settings.LOG_FILE}, logging to console only: {e}")
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not known_level:
        root_logger.warning(f"Unknown LOG_LEVEL '{settings.LOG_LEVEL}', logging at INFO.")


def initialize_fs(settings) -> Optional[Fs]:
    """
    Builds the Darkibox filesystem adapter described by the settings.
    Returns None (after logging why) if the remote cannot be set up.
    """
    try:
        return new_fs(settings.DARKIBOX_REMOTE_NAME, settings.DARKIBOX_ROOT, settings)
    except (ValueError, DarkiboxError) as e:
        logging.error(
            f"Failed to initialize darkibox remote '{settings.DARKIBOX_REMOTE_NAME}'. Error: {e}",
            exc_info=True,
        )
        return None


def main(argv=None) -> int:
    import argparse

    parser = argparse.ArgumentParser(
        description="Check a configured Darkibox remote."
    )
    parser.add_argument(
        "--list", metavar="DIR", nargs="?", const="", help="List a directory relative to the root."
    )
    parser.add_argument(
        "--about", action="store_true", help="Show account information (key protocol only)."
    )
    args = parser.parse_args(argv)

    setup_logging()
    settings = get_settings()
    fs = initialize_fs(settings)
    if fs is None:
        logging.critical(f"Could not establish a connection to {settings.DARKIBOX_BASE_URL}.")
        return 1

    try:
        if args.about:
            for key, value in fs.about().items():
                print(f"{key}: {value}")
        if args.list is not None:
            for entry in fs.list(args.list):
                kind = "dir " if entry.is_dir else "file"
                print(f"{kind} {entry.size():>12} {entry.remote}")
    except DarkiboxError as e:
        logging.critical(f"Darkibox request failed: {e}", exc_info=True)
        return 1
    finally:
        fs.protocol.transport.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
