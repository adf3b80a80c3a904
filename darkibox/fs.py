# fs.py
import logging
import threading
import time
from typing import BinaryIO, Dict, FrozenSet, List, Optional

from .config import Settings
from .exceptions import DarkiboxError, SizeMismatch
from .key_api import KeyProtocol
from .pacer import Pacer
from .path_api import PathProtocol
from .paths import join, normalize, normalize_root, relative_to
from .storage.base import RemoteProtocol
from .storage.dto import Features, FileMetadata
from .transport import RestTransport


class Fs:
    """
    A Darkibox remote seen as a filesystem rooted at `root`.

    All operations take paths relative to the root. They block for the
    duration of one or more HTTP round trips and are safe to call from
    several threads at once; pacing is enforced by the shared transport.
    """

    def __init__(
        self,
        name: str,
        root: str,
        protocol: RemoteProtocol,
        credential: Optional[str] = None,
        metadata_ttl: float = 0.0,
    ):
        self.name = name
        self.root = normalize_root(root)
        self.credential = credential
        self.protocol = protocol
        self.metadata_ttl = metadata_ttl
        self._features = protocol.features()
        self._records: Dict[str, FileMetadata] = {}
        self._records_lock = threading.Lock()

    def __str__(self):
        return f"darkibox root '{self.root}'"

    def __repr__(self):
        return f"Fs(name={self.name!r}, root={self.root!r}, protocol={self.protocol.name!r})"

    def abs_path(self, remote: str) -> str:
        return normalize(self.root, remote)

    def features(self) -> Features:
        return self._features

    def hashes(self) -> FrozenSet[str]:
        """Darkibox exposes no content checksums."""
        return frozenset()

    def cached(self, remote: str) -> Optional[FileMetadata]:
        """Returns the last-known record for a path without touching the network."""
        with self._records_lock:
            return self._records.get(self.abs_path(remote))

    def _remember(self, path: str, record: FileMetadata):
        with self._records_lock:
            self._records[path] = record

    def _forget(self, path: str):
        with self._records_lock:
            self._records.pop(path, None)

    def list(self, dir: str = "", cancel: Optional[threading.Event] = None) -> List["Object"]:
        """Lists the files and directories in `dir`."""
        path = self.abs_path(dir)
        try:
            logging.info(f"Listing darkibox path: '{path}'")
            entries = self.protocol.list(path, cancel=cancel)
        except DarkiboxError as e:
            logging.error(f"Failed to list darkibox path '{path}': {e}")
            raise

        objects = []
        for entry in entries:
            entry_path = self.abs_path("/" + join(path, entry.name))
            remote = relative_to(self.root, entry_path)
            self._remember(entry_path, entry)
            objects.append(Object(self, remote, entry))
        return objects

    def refresh(self, remote: str, cancel: Optional[threading.Event] = None) -> FileMetadata:
        """Fetches a fresh record for `remote` and stores it as the last-known one."""
        path = self.abs_path(remote)
        record = self.protocol.stat(path, cancel=cancel)
        self._remember(path, record)
        return record

    def stat(self, remote: str, cancel: Optional[threading.Event] = None) -> "Object":
        """Returns a handle for an existing file; raises NotFound if it is absent."""
        try:
            record = self.refresh(remote, cancel=cancel)
        except DarkiboxError as e:
            logging.error(f"Failed to stat darkibox path '{self.abs_path(remote)}': {e}")
            raise
        return Object(self, remote, record)

    new_object = stat

    def _verified(self, remote: str, size: int, cancel) -> FileMetadata:
        # The record is only remembered once it has the announced size.
        path = self.abs_path(remote)
        record = self.protocol.stat(path, cancel=cancel)
        if record.size != size:
            raise SizeMismatch(path, size, record.size)
        self._remember(path, record)
        return record

    def put(
        self,
        remote: str,
        stream: BinaryIO,
        size: int,
        cancel: Optional[threading.Event] = None,
    ) -> "Object":
        """
        Uploads `size` bytes from `stream` to `remote`.

        A handle is only returned once the remote reports the full size;
        otherwise an error is raised and no handle escapes. Whatever the
        remote kept of a failed upload is left where it is.
        """
        path = self.abs_path(remote)
        try:
            self.protocol.put(path, stream, size, cancel=cancel)
            record = self._verified(remote, size, cancel)
        except DarkiboxError as e:
            logging.error(f"Failed to upload to darkibox path '{path}': {e}")
            raise
        logging.info(f"Uploaded {size} bytes to '{path}'.")
        return Object(self, remote, record)

    def update(
        self,
        remote: str,
        stream: BinaryIO,
        size: int,
        cancel: Optional[threading.Event] = None,
    ) -> FileMetadata:
        """Replaces the content of `remote` and returns its fresh record."""
        path = self.abs_path(remote)
        try:
            self.protocol.update(path, stream, size, cancel=cancel)
            return self._verified(remote, size, cancel)
        except DarkiboxError as e:
            logging.error(f"Failed to update darkibox path '{path}': {e}")
            raise

    def mkdir(self, dir: str, cancel: Optional[threading.Event] = None):
        path = self.abs_path(dir)
        try:
            logging.info(f"Creating darkibox directory '{path}'")
            self.protocol.mkdir(path, cancel=cancel)
        except DarkiboxError as e:
            logging.error(f"Failed to create darkibox directory '{path}': {e}")
            raise

    def rmdir(self, dir: str, cancel: Optional[threading.Event] = None):
        path = self.abs_path(dir)
        try:
            logging.info(f"Removing darkibox directory '{path}'")
            self.protocol.rmdir(path, cancel=cancel)
        except DarkiboxError as e:
            logging.error(f"Failed to remove darkibox directory '{path}': {e}")
            raise
        self._forget(path)

    def remove(self, remote: str, cancel: Optional[threading.Event] = None):
        path = self.abs_path(remote)
        try:
            logging.info(f"Deleting darkibox file '{path}'")
            self.protocol.remove(path, cancel=cancel)
        except DarkiboxError as e:
            logging.error(f"Failed to delete darkibox file '{path}': {e}")
            raise
        self._forget(path)

    def about(self, cancel: Optional[threading.Event] = None) -> dict:
        """Account information, where the configured protocol offers it."""
        return self.protocol.about(cancel=cancel)


class Object:
    """
    A single remote file (or directory entry) and the last metadata
    snapshot fetched for it. The snapshot is replaced on refresh or
    update, never modified in place.
    """

    def __init__(self, fs: Fs, remote: str, metadata: FileMetadata):
        self._fs = fs
        self._remote = remote
        self._metadata = metadata
        self._fetched_at = time.monotonic()

    def __str__(self):
        return self._remote

    def __repr__(self):
        return f"Object(remote={self._remote!r}, size={self._metadata.size})"

    @property
    def fs(self) -> Fs:
        return self._fs

    @property
    def remote(self) -> str:
        return self._remote

    @property
    def metadata(self) -> FileMetadata:
        return self._metadata

    @property
    def is_dir(self) -> bool:
        return self._metadata.is_dir

    @property
    def mime_type(self) -> Optional[str]:
        return self._metadata.mime_type

    def size(self) -> int:
        return self._metadata.size

    def _replace(self, record: FileMetadata):
        self._metadata = record
        self._fetched_at = time.monotonic()

    def refresh(self, cancel: Optional[threading.Event] = None) -> FileMetadata:
        self._replace(self._fs.refresh(self._remote, cancel=cancel))
        return self._metadata

    def mod_time(self, cancel: Optional[threading.Event] = None):
        """
        Returns the modification time. If the adapter has a metadata TTL and
        the snapshot is older than it, re-fetch once; a failed re-fetch falls
        back to the last-known value.
        """
        ttl = self._fs.metadata_ttl
        if ttl > 0 and time.monotonic() - self._fetched_at > ttl:
            try:
                self.refresh(cancel=cancel)
            except DarkiboxError as e:
                logging.warning(
                    f"Could not refresh modification time of '{self._remote}', using cached value: {e}"
                )
        return self._metadata.mod_time

    def update(self, stream: BinaryIO, size: int, cancel: Optional[threading.Event] = None):
        """Replaces the file content. The snapshot only changes if the update succeeds."""
        record = self._fs.update(self._remote, stream, size, cancel=cancel)
        self._replace(record)

    def remove(self, cancel: Optional[threading.Event] = None):
        self._fs.remove(self._remote, cancel=cancel)


def new_protocol(settings: Settings, transport: RestTransport) -> RemoteProtocol:
    """Builds the protocol strategy selected by DARKIBOX_PROTOCOL."""
    if settings.DARKIBOX_PROTOCOL == "key":
        return KeyProtocol(
            transport,
            api_key=settings.API_KEY,
            file_description=settings.UPLOAD_FILE_DESCRIPTION,
        )
    if settings.DARKIBOX_PROTOCOL == "path":
        return PathProtocol(transport, api_key=settings.API_KEY)
    raise ValueError(f"Unknown DARKIBOX_PROTOCOL: {settings.DARKIBOX_PROTOCOL}")


def new_transport(settings: Settings) -> RestTransport:
    """Builds a transport (and its pacer) from settings. The caller owns and closes it."""
    pacer = Pacer(
        min_sleep=settings.PACER_MIN_SLEEP,
        max_sleep=settings.PACER_MAX_SLEEP,
        decay_constant=settings.PACER_DECAY_CONSTANT,
    )
    return RestTransport(
        settings.DARKIBOX_BASE_URL,
        pacer=pacer,
        timeout=settings.REQUEST_TIMEOUT,
        retries=settings.LOW_LEVEL_RETRIES,
    )


def new_fs(name: str, root: str, settings: Settings, transport: Optional[RestTransport] = None) -> Fs:
    """
    Creates an Fs for a configured remote. Pass `transport` to share one
    pacing budget between several remotes.
    """
    if transport is None:
        transport = new_transport(settings)
    protocol = new_protocol(settings, transport)
    fs = Fs(
        name,
        root,
        protocol,
        credential=settings.API_KEY,
        metadata_ttl=settings.METADATA_TTL_SECONDS,
    )
    logging.info(f"Darkibox remote '{name}' initialized ({protocol.name} protocol, {fs}).")
    return fs
