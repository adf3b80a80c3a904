# path_api.py
import logging
import threading
from typing import BinaryIO, List, Optional

from pydantic import ValidationError

from .exceptions import (
    DecodeError,
    DirectoryNotEmpty,
    NotADirectory,
    NotFound,
    RemoteError,
)
from .paths import url_path
from .storage.base import RemoteProtocol
from .storage.dto import Features, FileMetadata
from .transport import RestTransport


def _decode_entry(payload, path: str) -> FileMetadata:
    if not isinstance(payload, dict):
        raise DecodeError(f"Expected an entry object for '{path}', got {type(payload).__name__}", path=path)
    try:
        return FileMetadata.model_validate(payload)
    except ValidationError as e:
        raise DecodeError(f"Malformed entry for '{path}': {e}", path=path) from e


def _raise_not_found(e: RemoteError, path: str):
    if e.status == 404:
        raise NotFound(e.status, e.message or "not found", path=path) from e


class PathProtocol(RemoteProtocol):
    """
    The path-addressed Darkibox API: every endpoint takes the remote path
    as the tail of the URL, e.g. GET /list/photos/2024.
    """

    name = "path"

    def __init__(self, transport: RestTransport, api_key: Optional[str] = None):
        self.transport = transport
        self._headers = {"Accept": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def features(self) -> Features:
        return Features(can_have_empty_directories=True)

    def list(self, path: str, cancel: Optional[threading.Event] = None) -> List[FileMetadata]:
        try:
            payload = self.transport.call_json(
                "GET", url_path("/list", path), headers=self._headers, cancel=cancel
            )
        except RemoteError as e:
            if e.status == 409:
                raise NotADirectory(e.status, e.message or "not a directory", path=path) from e
            _raise_not_found(e, path)
            raise

        if isinstance(payload, dict):
            # The remote answers a listing of a file with the file's own entry.
            entry = _decode_entry(payload, path)
            if not entry.is_dir:
                raise NotADirectory(200, f"'{entry.name}' is a file", path=path)
            return []
        if not isinstance(payload, list):
            raise DecodeError(f"Expected a list of entries for '{path}'", path=path)
        return [_decode_entry(item, path) for item in payload]

    def stat(self, path: str, cancel: Optional[threading.Event] = None) -> FileMetadata:
        try:
            payload = self.transport.call_json(
                "GET", url_path("/fileinfo", path), headers=self._headers, cancel=cancel
            )
        except RemoteError as e:
            _raise_not_found(e, path)
            raise
        return _decode_entry(payload, path)

    def _send(self, method: str, prefix: str, path: str, stream: BinaryIO, size: int, cancel):
        headers = dict(self._headers, **{"Content-Type": "application/octet-stream"})
        try:
            response = self.transport.execute(
                method,
                url_path(prefix, path),
                headers=headers,
                body=stream,
                content_length=size,
                cancel=cancel,
            )
        except RemoteError as e:
            _raise_not_found(e, path)
            raise
        response.close()

    def put(self, path: str, stream: BinaryIO, size: int, cancel: Optional[threading.Event] = None) -> None:
        logging.info(f"Uploading {size} bytes to '{path}'...")
        self._send("POST", "/upload", path, stream, size, cancel)

    def update(self, path: str, stream: BinaryIO, size: int, cancel: Optional[threading.Event] = None) -> None:
        logging.info(f"Replacing content of '{path}' with {size} bytes...")
        self._send("PUT", "/update", path, stream, size, cancel)

    def mkdir(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        self.transport.execute(
            "POST", url_path("/mkdir", path), headers=self._headers, cancel=cancel
        ).close()

    def rmdir(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        try:
            self.transport.execute(
                "DELETE", url_path("/rmdir", path), headers=self._headers, cancel=cancel
            ).close()
        except RemoteError as e:
            if e.status == 409 or "not empty" in (e.message or "").lower():
                raise DirectoryNotEmpty(e.status, e.message or "directory not empty", path=path) from e
            _raise_not_found(e, path)
            raise

    def remove(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        try:
            self.transport.execute(
                "DELETE", url_path("/remove", path), headers=self._headers, cancel=cancel
            ).close()
        except RemoteError as e:
            _raise_not_found(e, path)
            raise
