import os

from feedsync.adapters.storage import LocalImageStorage, sanitize_name


def test_sanitize_name():
    assert sanitize_name("../../etc/passwd") == "passwd"
    assert sanitize_name("my photo (1).jpg") == "my-photo-1-.jpg"
    assert sanitize_name("...") == "image"


def test_local_storage_never_overwrites(tmp_path):
    storage = LocalImageStorage(str(tmp_path))

    first = storage.save(b"a", "front.jpg", "1001")
    second = storage.save(b"b", "front.jpg", "1001")

    assert (first, second) == ("1001/front.jpg", "1001/front-1.jpg")
    with open(os.path.join(tmp_path, "1001", "front.jpg"), "rb") as f:
        assert f.read() == b"a"
    assert storage.list_entities() == ["1001"]


def test_list_entities_without_root(tmp_path):
    assert LocalImageStorage(str(tmp_path / "missing")).list_entities() == []
