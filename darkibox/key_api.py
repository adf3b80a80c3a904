# key_api.py
import logging
import posixpath
import threading
from typing import BinaryIO, Dict, List, Optional

from pydantic import ValidationError

from .exceptions import (
    DecodeError,
    NotFound,
    RemoteError,
    UnsupportedOperation,
)
from .storage.base import RemoteProtocol
from .storage.dto import Features, FileMetadata, UploadResult
from .transport import RestTransport


def _first(value):
    """File endpoints answer with either one object or a list of them."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


class KeyProtocol(RemoteProtocol):
    """
    The key-addressed Darkibox API (/api/...): every call carries the API key
    as a query parameter and files are addressed by the code the server
    assigns at upload time. There are no directories.

    Uploads are a two step affair: ask /api/upload/server for an upload URL,
    then POST the file as a multipart form to that URL.
    """

    name = "key"

    def __init__(self, transport: RestTransport, api_key: str, file_description: str = ""):
        if not api_key:
            raise ValueError("The key-addressed protocol needs an API key")
        self.transport = transport
        self.api_key = api_key
        self.file_description = file_description
        self._codes: Dict[str, str] = {}
        self._codes_lock = threading.Lock()

    def features(self) -> Features:
        return Features(can_have_empty_directories=False, flat_namespace=True)

    def _check(self, payload, what: str, path: Optional[str] = None) -> dict:
        if not isinstance(payload, dict):
            raise DecodeError(f"Expected a JSON object from {what}", path=path)
        status = payload.get("status")
        if status is not None:
            try:
                status = int(status)
            except (TypeError, ValueError) as e:
                raise DecodeError(f"Invalid status '{status}' from {what}", path=path) from e
            if status == 404:
                raise NotFound(status, payload.get("msg", "not found"), path=path)
            if status != 200:
                raise RemoteError(status, str(payload.get("msg", "")), path=path)
        return payload

    def _get(self, endpoint: str, cancel, path: Optional[str] = None, **params) -> dict:
        payload = self.transport.call_json(
            "GET", endpoint, params=dict(key=self.api_key, **params), cancel=cancel
        )
        return self._check(payload, endpoint, path=path)

    def file_code(self, path: str) -> str:
        """The server-side code of a path: the one we uploaded it under, else its last segment."""
        with self._codes_lock:
            code = self._codes.get(path)
        return code or posixpath.basename(path.rstrip("/"))

    def about(self, cancel: Optional[threading.Event] = None) -> dict:
        payload = self._get("/api/account/info", cancel)
        return payload.get("result", payload)

    def upload_server(self, cancel: Optional[threading.Event] = None) -> str:
        payload = self._get("/api/upload/server", cancel)
        server = payload.get("result")
        if not isinstance(server, str) or not server:
            raise DecodeError("Upload server response has no 'result' URL")
        return server

    def file_info(self, path: str, cancel: Optional[threading.Event] = None) -> dict:
        """Returns the raw info object the server keeps for a file."""
        code = self.file_code(path)
        payload = self._get("/api/file/info", cancel, path=path, file_code=code)
        if "result" not in payload:
            raise DecodeError("File info response has no 'result'", path=path)
        info = _first(payload["result"])
        if not isinstance(info, dict):
            raise NotFound(404, f"no file with code '{code}'", path=path)
        # Per-file status inside the result list.
        self._check(info, "/api/file/info", path=path)
        return info

    def stat(self, path: str, cancel: Optional[threading.Event] = None) -> FileMetadata:
        info = self.file_info(path, cancel)
        size = info.get("size", info.get("file_size"))
        if size is None:
            raise DecodeError("File info has no size", path=path)
        try:
            return FileMetadata(
                name=info.get("name") or info.get("file_title") or posixpath.basename(path),
                size=size,
                mod_time=info.get("uploaded") or info.get("created"),
                mime_type=info.get("mime_type"),
                is_dir=False,
            )
        except ValidationError as e:
            raise DecodeError(f"Malformed file info for '{path}': {e}", path=path) from e

    def put(self, path: str, stream: BinaryIO, size: int, cancel: Optional[threading.Event] = None) -> None:
        server = self.upload_server(cancel)
        title = posixpath.basename(path)
        logging.info(f"Uploading {size} bytes as '{title}' via {server}...")
        payload = self.transport.call_json(
            "POST",
            url=server,
            data={
                "key": self.api_key,
                "file_title": title,
                "file_descr": self.file_description,
            },
            files={"file": (title, stream)},
            cancel=cancel,
        )
        if isinstance(payload, dict) and "files" in payload:
            payload = payload["files"]
        entry = _first(payload)
        if isinstance(entry, dict):
            self._check(entry, "upload server", path=path)
        try:
            result = UploadResult.model_validate(entry)
        except ValidationError as e:
            raise DecodeError(f"Upload response for '{path}' has no file code: {e}", path=path) from e
        if result.file_status and result.file_status.upper() != "OK":
            raise RemoteError(200, f"upload rejected: {result.file_status}", path=path)

        with self._codes_lock:
            self._codes[path] = result.file_code
        logging.info(f"Uploaded '{path}' as file code {result.file_code}.")

    def list(self, path: str, cancel: Optional[threading.Event] = None) -> List[FileMetadata]:
        raise UnsupportedOperation("The key-addressed API cannot list directories")

    def update(self, path: str, stream: BinaryIO, size: int, cancel: Optional[threading.Event] = None) -> None:
        raise UnsupportedOperation("The key-addressed API cannot replace file content")

    def mkdir(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        raise UnsupportedOperation("The key-addressed API has no directories")

    def rmdir(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        raise UnsupportedOperation("The key-addressed API has no directories")

    def remove(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        raise UnsupportedOperation("The key-addressed API cannot delete files")
