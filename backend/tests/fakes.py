"""In-memory collaborators injected into the app under test."""
from __future__ import annotations
from typing import Dict, List, Optional
from portal.errors import AttachmentStoreError
from portal.services.attachments import AttachmentStore


class RecordingAttachmentStore(AttachmentStore):
    def __init__(self):
        self.reset()

    def reset(self):
        self.blobs: Dict[str, bytes] = {}
        self.delete_calls: List[List[str]] = []
        self.fail_put_on: Optional[int] = None  # 1-based put() call index that raises
        self.fail_delete = False
        self._puts = 0

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        self._puts += 1
        if self.fail_put_on is not None and self._puts >= self.fail_put_on:
            raise AttachmentStoreError('upload failed', failed_paths=[path])
        self.blobs[path] = data
        return path

    def get_public_url(self, path: str) -> str:
        return f'https://files.test/{path}'

    def delete(self, paths) -> None:
        paths = list(paths)
        self.delete_calls.append(paths)
        if self.fail_delete:
            raise AttachmentStoreError('delete failed', failed_paths=paths)
        for p in paths:
            self.blobs.pop(p, None)


class RecordingNotifier:
    def __init__(self):
        self.reset()

    def reset(self):
        self.sent = []
        self.fail = False

    def send(self, msg) -> bool:
        if self.fail:
            raise RuntimeError('mail relay down')
        self.sent.append(msg)
        return True

    def of_type(self, kind: str):
        return [m for m in self.sent if m.type == kind]
