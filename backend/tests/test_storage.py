"""
Stockage fichiers par bucket (tmp_path)
Run: cd backend && pytest tests/test_storage.py -v
"""

import pytest

from services import storage
from services.storage import StorageError


@pytest.fixture
def buckets(monkeypatch, tmp_path):
    import config
    monkeypatch.setattr(config, "STORAGE_ROOT", tmp_path)
    storage.ensure_buckets()
    return tmp_path


class TestSaveFile:
    def test_save_and_read_back(self, buckets):
        path = storage.save_file("documents", "m1", "plan masse.pdf", b"%PDF-1.4")
        assert path.startswith("m1/")
        assert path.endswith("_plan_masse.pdf")

        full = storage.get_file_path("documents", path)
        assert full.read_bytes() == b"%PDF-1.4"
        assert full.parent.parent == (buckets / "documents").resolve()

    def test_extension_rejected(self, buckets):
        with pytest.raises(StorageError, match="Extension"):
            storage.save_file("covers", "m1", "script.exe", b"x")

    def test_too_large(self, buckets, monkeypatch):
        monkeypatch.setattr(storage, "MAX_FILE_SIZE", 4)
        with pytest.raises(StorageError, match="volumineux"):
            storage.save_file("visas", "m1", "avis.pdf", b"12345")

    def test_unknown_bucket(self, buckets):
        with pytest.raises(StorageError):
            storage.save_file("other", "m1", "a.pdf", b"x")


class TestPaths:
    def test_traversal_rejected(self, buckets):
        with pytest.raises(StorageError):
            storage.get_file_path("documents", "../../etc/passwd")

    def test_missing_file(self, buckets):
        with pytest.raises(StorageError):
            storage.get_file_path("documents", "m1/absent.pdf")

    def test_delete(self, buckets):
        path = storage.save_file("versions", "m1", "b.pdf", b"x")
        assert storage.delete_file("versions", path) is True
        assert storage.delete_file("versions", path) is False
        assert storage.delete_file("versions", None) is False


class TestHelpers:
    def test_mime_type(self):
        assert storage.guess_mime_type("m1/1_plan.PDF") == "application/pdf"
        assert storage.guess_mime_type("m1/1_plan.xyz") == "application/octet-stream"

    @pytest.mark.parametrize("size,expected", [
        (512, "512 o"),
        (2048, "2.0 KB"),
        (int(1.5 * 1024 * 1024), "1.50 MB"),
    ])
    def test_format_size(self, size, expected):
        assert storage.format_size(size) == expected
