import hashlib
from typing import IO

DEFAULT_CHUNK = 1024 * 1024


class HashingWriter:
    """Writes to a binary file while feeding the same bytes to a SHA-256 digest.

    Memory use stays bounded by the chunk size regardless of payload size.
    """

    def __init__(self, file_obj: IO[bytes]):
        self._file = file_obj
        self._hash = hashlib.sha256()
        self.size = 0

    def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        self._file.write(chunk)
        self._hash.update(chunk)
        self.size += len(chunk)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()
