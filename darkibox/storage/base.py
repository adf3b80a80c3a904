# darkibox/storage/base.py
import threading
from abc import ABC, abstractmethod
from typing import BinaryIO, List, Optional

from ..exceptions import UnsupportedOperation
from .dto import Features, FileMetadata


class RemoteProtocol(ABC):
    """
    Abstract base class for one shape of the Darkibox HTTP API.
    The Fs adapter picks one implementation at construction time and routes
    every filesystem operation through it. All paths passed in are already
    normalized absolute remote paths.
    """

    name = "abstract"

    @abstractmethod
    def features(self) -> Features:
        pass

    @abstractmethod
    def list(self, path: str, cancel: Optional[threading.Event] = None) -> List[FileMetadata]:
        """
        Lists the entries of a directory.

        :param path: The absolute remote path of the directory.
        :return: The decoded entries, directories included.
        """
        pass

    @abstractmethod
    def stat(self, path: str, cancel: Optional[threading.Event] = None) -> FileMetadata:
        """
        Fetches the metadata of a single entry.

        :param path: The absolute remote path of the entry.
        """
        pass

    @abstractmethod
    def put(
        self,
        path: str,
        stream: BinaryIO,
        size: int,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Uploads new content. Callers stat the path afterwards.

        :param stream: A binary stream holding exactly `size` bytes.
        """
        pass

    @abstractmethod
    def update(
        self,
        path: str,
        stream: BinaryIO,
        size: int,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Replaces the content of an existing file."""
        pass

    @abstractmethod
    def mkdir(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        pass

    @abstractmethod
    def rmdir(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        pass

    @abstractmethod
    def remove(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        pass

    def about(self, cancel: Optional[threading.Event] = None) -> dict:
        """Returns account information, where the protocol offers it."""
        raise UnsupportedOperation(f"The {self.name} protocol has no account endpoint")
