"""
Tests for upload path generation and the artifact store.
"""

from certmap.storage.artifact_store import ArtifactStore
from certmap.storage.paths import doc_hash, raw_pdf_path, safe_file_name


def test_doc_hash_is_sha256():
    assert doc_hash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_safe_file_name_strips_directories():
    assert safe_file_name("../../etc/passwd") == "passwd"
    assert safe_file_name("My Certificate (final).pdf") == "My_Certificate_final_.pdf"


def test_safe_file_name_fallback():
    assert safe_file_name("") == "document.pdf"
    assert safe_file_name("...") == "document.pdf"


def test_raw_pdf_path():
    assert raw_pdf_path("abc", "cert.pdf") == "abc/raw/cert.pdf"


def test_store_round_trip(tmp_path):
    store = ArtifactStore(str(tmp_path / "root"))
    relative = store.save_bytes(raw_pdf_path("abc", "cert.pdf"), b"%PDF")
    assert store.exists(relative)
    assert store.full_path(relative).read_bytes() == b"%PDF"
    assert not store.exists("abc/raw/other.pdf")
