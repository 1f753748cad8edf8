import re
import pytest
from portal.errors import AttachmentStoreError
from portal.services.attachments import AFTER_FOLDER, BEFORE_FOLDER, LocalAttachmentStore, generate_path


def test_generate_path_keeps_extension_and_is_unique():
    a = generate_path(BEFORE_FOLDER, 'Photo.JPG')
    b = generate_path(BEFORE_FOLDER, 'Photo.JPG')
    assert re.fullmatch(r'before/\d+-[0-9a-f]{12}\.jpg', a)
    assert a != b
    assert generate_path(AFTER_FOLDER, 'noext').endswith('.bin')


def test_local_store_round_trip(tmp_path):
    store = LocalAttachmentStore(str(tmp_path), 'https://cdn.test/files/')
    path = store.put('before/1.jpg', b'data', 'image/jpeg')
    assert (tmp_path / 'before' / '1.jpg').read_bytes() == b'data'
    assert store.get_public_url(path) == 'https://cdn.test/files/before/1.jpg'
    store.delete([path, 'after/missing.jpg'])
    assert not (tmp_path / 'before' / '1.jpg').exists()


def test_local_store_rejects_escaping_paths(tmp_path):
    store = LocalAttachmentStore(str(tmp_path))
    with pytest.raises(AttachmentStoreError):
        store.put('../outside.txt', b'x')
    with pytest.raises(AttachmentStoreError):
        store.put('/etc/passwd', b'x')


def test_delete_attempts_every_path_before_failing(tmp_path):
    store = LocalAttachmentStore(str(tmp_path))
    store.put('before/1.jpg', b'1')
    store.put('after/2.jpg', b'2')
    with pytest.raises(AttachmentStoreError) as exc:
        store.delete(['../bad.jpg', 'before/1.jpg', 'after/2.jpg'])
    assert exc.value.failed_paths == ['../bad.jpg']
    assert not (tmp_path / 'before' / '1.jpg').exists()
    assert not (tmp_path / 'after' / '2.jpg').exists()
