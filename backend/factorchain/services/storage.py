"""Supporting-document storage for uploaded invoice PDFs.

Files are written under `settings.upload_dir` as
`<owner_id>/<epoch_ms>-<filename>` and published under
`settings.public_upload_base_url`.  Swapping in an object store only needs
another class with the same `save` / `delete` pair.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path

from factorchain.config import settings

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredDocument:
    key: str
    url: str


def _safe_name(filename: str) -> str:
    name = _UNSAFE.sub("_", Path(filename or "invoice.pdf").name).strip("._")
    return name or "invoice.pdf"


class DocumentStorage:
    def __init__(self, root: str | Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    async def save(self, owner_id: str, filename: str, content: bytes) -> StoredDocument:
        key = f"{owner_id}/{int(time.time() * 1000)}-{_safe_name(filename)}"
        path = self.root / key
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, content)
        logger.info("Stored document %s (%d bytes)", key, len(content))
        return StoredDocument(key=key, url=f"{self.public_base_url}/{key}")

    async def delete(self, document: StoredDocument) -> None:
        path = self.root / document.key
        await asyncio.to_thread(path.unlink, missing_ok=True)


def get_document_storage() -> DocumentStorage:
    return DocumentStorage(settings.upload_dir, settings.public_upload_base_url)
