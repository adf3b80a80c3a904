# tests/test_main.py
import logging
from unittest.mock import MagicMock, patch

from darkibox.exceptions import NotFound
from darkibox.fs import Fs
from darkibox.key_api import KeyProtocol
from darkibox.main import initialize_fs, main, setup_logging
from darkibox.path_api import PathProtocol


def test_initialize_fs_path_protocol(mock_settings):
    """Ensures initialize_fs builds a path-addressed Fs from settings."""
    fs = initialize_fs(mock_settings)

    assert isinstance(fs, Fs)
    assert isinstance(fs.protocol, PathProtocol)
    assert fs.name == "darkibox"
    assert fs.root == "/backup"
    assert fs.credential == "test_key"
    assert fs.protocol.transport.retries == 3
    assert fs.protocol.transport.base_url == mock_settings.DARKIBOX_BASE_URL


def test_initialize_fs_key_protocol(mock_settings):
    mock_settings.DARKIBOX_PROTOCOL = "key"

    fs = initialize_fs(mock_settings)

    assert isinstance(fs.protocol, KeyProtocol)
    assert fs.features().flat_namespace is True


@patch("darkibox.main.logging")
def test_initialize_fs_failure_returns_none(mock_logging, mock_settings):
    """A key protocol without a key cannot be built; the error is logged."""
    mock_settings.DARKIBOX_PROTOCOL = "key"
    mock_settings.API_KEY = None

    assert initialize_fs(mock_settings) is None
    mock_logging.error.assert_called_once()


@patch("darkibox.main.get_settings")
def test_setup_logging_configures_root_logger(mock_get_settings, mock_settings, tmp_path):
    mock_settings.LOG_LEVEL = "debug"
    type(mock_settings).LOG_FILE = tmp_path / "darkibox.log"
    mock_get_settings.return_value = mock_settings
    root_logger = logging.getLogger()
    saved_handlers, saved_level = list(root_logger.handlers), root_logger.level

    try:
        setup_logging()
        assert root_logger.level == logging.DEBUG
        kinds = {type(h) for h in root_logger.handlers}
        assert logging.StreamHandler in kinds
        assert logging.FileHandler in kinds
        assert logging.getLogger("urllib3").level == logging.WARNING
    finally:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)


def test_setup_logging_falls_back_to_info_for_unknown_level(mock_settings, tmp_path):
    mock_settings.LOG_LEVEL = "chatty"
    type(mock_settings).LOG_FILE = tmp_path / "darkibox.log"
    root_logger = logging.getLogger()
    saved_handlers, saved_level = list(root_logger.handlers), root_logger.level

    try:
        setup_logging(mock_settings)
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 2
        assert "%(threadName)s" in root_logger.handlers[0].formatter._fmt
    finally:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)


@patch("darkibox.main.setup_logging")
@patch("darkibox.main.get_settings")
@patch("darkibox.main.initialize_fs")
def test_main_lists_directory(mock_initialize_fs, mock_get_settings, mock_setup_logging, mock_settings, capsys):
    fs = MagicMock()
    entry = MagicMock(is_dir=False, remote="docs/a.txt")
    entry.size.return_value = 10
    fs.list.return_value = [entry]
    mock_initialize_fs.return_value = fs
    mock_get_settings.return_value = mock_settings

    assert main(["--list", "docs"]) == 0

    fs.list.assert_called_once_with("docs")
    assert "docs/a.txt" in capsys.readouterr().out
    fs.protocol.transport.close.assert_called_once()


@patch("darkibox.main.setup_logging")
@patch("darkibox.main.get_settings")
@patch("darkibox.main.initialize_fs")
def test_main_reports_request_failure(mock_initialize_fs, mock_get_settings, mock_setup_logging, mock_settings):
    fs = MagicMock()
    fs.list.side_effect = NotFound(404, "no such directory", path="/backup/nope")
    mock_initialize_fs.return_value = fs
    mock_get_settings.return_value = mock_settings

    assert main(["--list", "nope"]) == 1


@patch("darkibox.main.setup_logging")
@patch("darkibox.main.get_settings")
@patch("darkibox.main.initialize_fs", return_value=None)
def test_main_exits_when_remote_cannot_be_built(mock_initialize_fs, mock_get_settings, mock_setup_logging, mock_settings):
    mock_get_settings.return_value = mock_settings

    assert main([]) == 1
