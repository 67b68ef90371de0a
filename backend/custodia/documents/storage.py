import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator
from urllib.parse import quote

from ..core.errors import ErrorKind, Fail, Ok, Result
from ..core.settings import settings
from ..models.Person import PersonDocument

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class StoredFile:
    path: Path
    file_name: str
    media_type: str
    size_bytes: int | None = None

    def content_disposition(self, inline: bool) -> str:
        kind = "inline" if inline else "attachment"
        ascii_name = self.file_name.encode("ascii", "replace").decode("ascii")
        # the quoted fallback holds printable ASCII only, no quotes or backslashes
        fallback = "".join(c for c in ascii_name if c.isprintable() and c not in '"\\') or "document"
        return f"{kind}; filename=\"{fallback}\"; filename*=UTF-8''{quote(self.file_name, safe='')}"


class DocumentStorage:
    """Read-only view of the document byte store rooted at ``STORAGE_DIR``."""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.STORAGE_DIR).resolve()

    def locate(self, document: PersonDocument) -> Result[StoredFile]:
        if not document.file_path:
            return Fail(ErrorKind.NOT_FOUND, "Document has no stored file")

        candidate = (self.root / document.file_path).resolve()
        if not candidate.is_relative_to(self.root):
            log.warning("Refusing path outside the storage root for document %s", document.id)
            return Fail(ErrorKind.NOT_FOUND, "Document has no stored file")
        if not candidate.is_file():
            log.warning("Stored file missing for document %s: %s", document.id, candidate)
            return Fail(ErrorKind.NOT_FOUND, "Stored file is missing")

        file_name = document.file_name or candidate.name
        media_type = mimetypes.guess_type(file_name)[0] or "application/octet-stream"
        return Ok(StoredFile(path=candidate, file_name=file_name, media_type=media_type,
                             size_bytes=document.size_bytes))

    def open(self, stored: StoredFile) -> BinaryIO:
        return open(stored.path, mode="rb")


def iter_file(file_like: BinaryIO) -> Iterator[bytes]:
    with file_like:
        while True:
            chunk = file_like.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
