from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
import re
import uuid
from dataclasses import dataclass, field
from io import BytesIO
from typing import Iterator

from PIL import Image, UnidentifiedImageError

from creative_evaluator.errors import ValidationError

PREVIEW_SIZE = (320, 320)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w-]+=[^;,]*)*)(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)

_PIL_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def sniff_mime(content: bytes, filename: str = "") -> str:
    try:
        with Image.open(BytesIO(content)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError(f"{filename or 'upload'} is not a readable image") from exc
    mime = _PIL_MIME.get(fmt or "")
    if mime:
        return mime
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def to_data_uri(content: bytes, filename: str = "") -> str:
    mime = sniff_mime(content, filename)
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    m = _DATA_URI_RE.match(uri.strip())
    if not m or not m.group("b64"):
        raise ValidationError("expected a base64 data URI")
    try:
        data = base64.b64decode(m.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("data URI payload is not valid base64") from exc
    return m.group("mime") or "application/octet-stream", data


def make_preview(content: bytes) -> str:
    """Small PNG thumbnail as a data URI, standing in for a browser object URL."""
    with Image.open(BytesIO(content)) as img:
        thumb = img.convert("RGBA") if img.mode in ("P", "LA", "RGBA") else img.convert("RGB")
        thumb.thumbnail(PREVIEW_SIZE, Image.Resampling.LANCZOS)
        buf = BytesIO()
        thumb.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


@dataclass
class StagedImage:
    id: str
    name: str
    data_uri: str
    preview: str | None

    def release(self) -> None:
        self.preview = None


def stage_image(name: str, content: bytes) -> StagedImage:
    data_uri = to_data_uri(content, name)
    return StagedImage(id=uuid.uuid4().hex[:12], name=name, data_uri=data_uri, preview=make_preview(content))


async def encode_all(files: list[tuple[str, bytes]]) -> list[StagedImage]:
    """Encode a batch concurrently; results keep the input order."""
    return list(await asyncio.gather(*(asyncio.to_thread(stage_image, name, content) for name, content in files)))


@dataclass
class StagingArea:
    items: list[StagedImage] = field(default_factory=list)

    def add(self, name: str, content: bytes) -> StagedImage:
        staged = stage_image(name, content)
        self.items.append(staged)
        return staged

    def extend(self, staged: list[StagedImage]) -> None:
        self.items.extend(staged)

    def get(self, image_id: str) -> StagedImage | None:
        return next((i for i in self.items if i.id == image_id), None)

    def replace(self, image_id: str, name: str, content: bytes) -> StagedImage:
        for idx, old in enumerate(self.items):
            if old.id == image_id:
                staged = stage_image(name, content)
                old.release()
                self.items[idx] = staged
                return staged
        raise KeyError(image_id)

    def remove(self, image_id: str) -> bool:
        for idx, item in enumerate(self.items):
            if item.id == image_id:
                item.release()
                del self.items[idx]
                return True
        return False

    def clear(self) -> None:
        for item in self.items:
            item.release()
        self.items.clear()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[StagedImage]:
        return iter(self.items)
