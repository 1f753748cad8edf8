"""Attachment (blob) storage collaborator.

Tickets reference blobs by path under logical folders: ``before/`` and ``after/`` for
photos, ``invoices/`` for invoice files. Every upload gets a freshly generated path, so
concurrent uploads never collide.
"""
from __future__ import annotations
import logging
import os
import secrets
import time
from pathlib import Path
from typing import Iterable, List, Optional

from portal.errors import AttachmentStoreError

logger = logging.getLogger(__name__)

BEFORE_FOLDER = 'before'
AFTER_FOLDER = 'after'
INVOICE_FOLDER = 'invoices'


def generate_path(folder: str, filename: str) -> str:
    """<folder>/<ms timestamp>-<random>.<ext>, keeping the original extension."""
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else 'bin'
    return f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(6)}.{ext}"


class AttachmentStore:
    """Interface used by the ticket gateway."""

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def get_public_url(self, path: str) -> str:
        raise NotImplementedError

    def delete(self, paths: Iterable[str]) -> None:
        raise NotImplementedError


class LocalAttachmentStore(AttachmentStore):
    """Directory-backed store. Public URLs are ``<public_base_url>/<path>``."""

    def __init__(self, root: str, public_base_url: str = '/attachments'):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip('/')

    def _resolve(self, path: str) -> Path:
        if not path or os.path.isabs(path) or '..' in Path(path).parts:
            raise AttachmentStoreError(f'Invalid attachment path {path!r}', failed_paths=[path])
        return self.root / path

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise AttachmentStoreError(f'Failed to store {path}', failed_paths=[path]) from e
        return path

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{path}"

    def delete(self, paths: Iterable[str]) -> None:
        failed: List[str] = []
        for path in paths:
            try:
                self._resolve(path).unlink(missing_ok=True)
            except (OSError, AttachmentStoreError) as e:
                logger.warning('Failed to delete attachment %s: %s', path, e)
                failed.append(path)
        if failed:
            raise AttachmentStoreError(f'Failed to delete {len(failed)} attachment(s)', failed_paths=failed)


__all__ = [
    'AttachmentStore', 'LocalAttachmentStore', 'generate_path',
    'BEFORE_FOLDER', 'AFTER_FOLDER', 'INVOICE_FOLDER',
]
