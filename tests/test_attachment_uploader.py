"""
Tests for attachment naming, size limits and upload results
"""
import pytest

from marketchat.errors import ValidationError
from marketchat.repositories.memory import InMemoryObjectStore
from marketchat.services.attachment_uploader import (
    AttachmentUploader,
    UploadSource,
    classify,
    decode_data_url,
    sanitize_filename,
    sanitize_folder,
)
from marketchat.utils.notifications import QueueNotifier

from conftest import run


FIXED_CLOCK = lambda: 1700000000.5  # noqa: E731


@pytest.fixture
def objects():
    return InMemoryObjectStore("http://testserver")


@pytest.fixture
def uploader(objects, notifier):
    return AttachmentUploader(objects, notifier, max_bytes=1024, clock=FIXED_CLOCK)


@pytest.mark.unit
class TestNaming:

    def test_sanitize_filename(self):
        assert sanitize_filename("mon devis (1).pdf") == "mon_devis_1.pdf"

    def test_sanitize_folds_accents(self):
        assert sanitize_filename("café menu.pdf") == "cafe_menu.pdf"
        assert sanitize_filename("C:\\Users\\léa\\reçu.png") == "recu.png"

    def test_sanitize_strips_directories(self):
        assert sanitize_filename("../../etc/passwd") == "passwd"

    def test_sanitize_empty(self):
        assert sanitize_filename("") == "file"

    def test_sanitize_folder(self):
        assert sanitize_folder("/chat/../abc def/") == "chat/abc_def"
        assert sanitize_folder("") == "uploads"

    def test_object_name_has_epoch_ms_prefix(self, uploader):
        assert uploader.object_name("photo chantier.jpg") == "1700000000500-photo_chantier.jpg"


@pytest.mark.unit
class TestDataUrl:

    def test_base64_image(self):
        source = decode_data_url("data:image/png;base64,aGVsbG8=")
        assert source.data == b"hello"
        assert source.content_type == "image/png"
        assert source.filename == "capture.png"

    def test_percent_encoded_text(self):
        source = decode_data_url("data:text/plain,hello%20world")
        assert source.data == b"hello world"

    def test_not_a_data_url(self):
        with pytest.raises(ValidationError):
            decode_data_url("http://example.com/a.png")

    def test_bad_base64(self):
        with pytest.raises(ValidationError):
            decode_data_url("data:image/png;base64,@@@")


@pytest.mark.unit
class TestUpload:

    def test_returns_public_url(self, uploader, objects):
        source = UploadSource(b"%PDF-1.4", "devis.pdf", "application/pdf")
        url = run(uploader.upload(source, "chat/c1"))
        assert url == "http://testserver/files/chat/c1/1700000000500-devis.pdf"
        assert objects.paths() == ["chat/c1/1700000000500-devis.pdf"]

    def test_oversized_rejected_before_storage(self, uploader, objects, notifier):
        source = UploadSource(b"x" * 1025, "big.bin")
        assert run(uploader.upload(source, "chat/c1")) is None
        assert objects.put_calls == 0
        assert notifier.drain() == [("error", "Some of the information sent is invalid.")]
        assert notifier.errors == []

    def test_ensure_size(self, uploader):
        uploader.ensure_size(1024)
        with pytest.raises(ValidationError):
            uploader.ensure_size(1025)

    def test_attachment_classified_as_image(self, uploader):
        content = run(uploader.upload_attachment("data:image/png;base64,aGVsbG8=", "chat/c1"))
        assert content.kind == "image"
        assert content.url.endswith("capture.png")
        assert content.size == 5
        assert content.content_type == "image/png"

    def test_attachment_classified_as_file(self, uploader):
        content = run(uploader.upload_attachment(UploadSource(b"abc", "notes.txt", "text/plain"), "chat/c1"))
        assert content.kind == "file"
        assert content.file_name == "notes.txt"
        assert content.size == 3
        assert content.content_type == "text/plain"

    def test_unprovisioned_store_returns_none(self):
        notifier = QueueNotifier()
        uploader = AttachmentUploader(InMemoryObjectStore(provisioned=False), notifier)
        assert run(uploader.upload(UploadSource(b"abc", "a.txt"), "uploads")) is None
        assert notifier.errors == []


@pytest.mark.unit
def test_classify():
    assert classify("image/jpeg", "a.jpg", "u").kind == "image"
    assert classify("application/pdf", "a.pdf", "u").kind == "file"
