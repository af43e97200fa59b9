import base64
import binascii
import logging
import mimetypes
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union
from urllib.parse import unquote_to_bytes

from werkzeug.utils import secure_filename

from marketchat.errors import ChatError, ValidationError
from marketchat.repositories.base import ObjectStore
from marketchat.schemas.chat import MessageContent
from marketchat.utils.calls import bounded
from marketchat.utils.notifications import LoggingNotifier, report_failure


logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class UploadSource:
    """Binary payload to upload, with the name and type the user picked."""

    data: bytes
    filename: str
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.data)


def sanitize_filename(name: str) -> str:
    # secure_filename only splits on the host separator
    base = name.rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    return secure_filename(base) or "file"


def sanitize_folder(folder: str) -> str:
    parts = [sanitize_filename(p) for p in folder.strip("/").split("/") if p and p not in (".", "..")]
    return "/".join(parts) or "uploads"


def decode_data_url(value: str, default_name: str = "capture") -> UploadSource:
    """Turn a ``data:`` URL (e.g. a captured selfie) into an ``UploadSource``."""
    if not value.startswith("data:") or "," not in value:
        raise ValidationError("not a data URL", field="file")
    header, _, body = value[5:].partition(",")
    params = header.split(";")
    content_type = params[0] or "text/plain"
    try:
        if "base64" in params[1:]:
            data = base64.b64decode(body, validate=True)
        else:
            data = unquote_to_bytes(body)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"undecodable data URL: {exc}", field="file") from exc
    extension = mimetypes.guess_extension(content_type) or ".bin"
    return UploadSource(data=data, filename=f"{default_name}{extension}", content_type=content_type)


def classify(content_type: str, file_name: str, url: str, size: Optional[int] = None) -> MessageContent:
    if content_type.startswith("image/"):
        return MessageContent.of_image(url, size=size, content_type=content_type)
    return MessageContent.of_file(file_name, url, size=size, content_type=content_type)


class AttachmentUploader:

    def __init__(
        self,
        objects: ObjectStore,
        notifier: LoggingNotifier,
        max_bytes: int = MAX_UPLOAD_BYTES,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._objects = objects
        self._notifier = notifier
        self.max_bytes = max_bytes
        self._timeout = timeout
        self._clock = clock

    def ensure_size(self, size: int) -> None:
        if size > self.max_bytes:
            raise ValidationError(
                f"file is {size} bytes, limit is {self.max_bytes} bytes", field="file"
            )

    def normalize(self, file: Union[UploadSource, str]) -> UploadSource:
        if isinstance(file, UploadSource):
            return file
        if isinstance(file, str):
            return decode_data_url(file)
        raise ValidationError("unsupported upload payload", field="file")

    def object_name(self, filename: str) -> str:
        return f"{int(self._clock() * 1000)}-{sanitize_filename(filename)}"

    async def _store(self, source: UploadSource, destination_folder: str) -> str:
        self.ensure_size(source.size)
        path = f"{sanitize_folder(destination_folder)}/{self.object_name(source.filename)}"
        logger.info("Uploading %s (%d bytes, %s)", path, source.size, source.content_type)
        await bounded(self._objects.put(path, source.data, source.content_type), self._timeout)
        return self._objects.public_url(path)

    async def upload(self, file: Union[UploadSource, str], destination_folder: str) -> Optional[str]:
        """Public URL of the stored file, or None (after notifying the user) on failure."""
        try:
            return await self._store(self.normalize(file), destination_folder)
        except ChatError as exc:
            report_failure(self._notifier, exc, "upload the file")
            return None

    async def attach(self, file: Union[UploadSource, str], destination_folder: str) -> MessageContent:
        """Upload and tag the result as an image or a generic file payload."""
        source = self.normalize(file)
        url = await self._store(source, destination_folder)
        return classify(source.content_type, source.filename, url, size=source.size)

    async def upload_attachment(self, file: Union[UploadSource, str], destination_folder: str) -> Optional[MessageContent]:
        try:
            return await self.attach(file, destination_folder)
        except ChatError as exc:
            report_failure(self._notifier, exc, "upload the attachment")
            return None
