"""
Local attachment drafts staged before a turn is sent.
"""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field

from chatflow.models.message import FileUpload


class AttachmentKind:
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    URL = "url"


class UploadTag:
    NONE = "none"
    RAG = "file:rag"
    FULL = "file:full"


class LocalFile(BaseModel):
    """A file picked, dropped or recorded locally. Either `path` or `content` is set."""
    name: str
    mime: str = ""
    size: int = 0
    path: Optional[Path] = None
    content: Optional[bytes] = Field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "LocalFile":
        p = Path(path)
        mime, _ = mimetypes.guess_type(p.name)
        return cls(name=p.name, mime=mime or "", size=p.stat().st_size, path=p)

    @classmethod
    def from_bytes(cls, name: str, content: bytes, mime: str = "") -> "LocalFile":
        return cls(name=name, mime=mime, size=len(content), content=content)

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1]

    async def read(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.path is None:
            raise ValueError(f"{self.name}: nothing to read")
        return await asyncio.to_thread(self.path.read_bytes)


class Attachment(BaseModel):
    """Draft attachment. `data` holds a data URL, a URL, or server-issued content once uploaded."""
    kind: str
    data: str
    preview: str
    name: str = ""
    mime: str = ""
    tag: str = UploadTag.NONE
    uploaded: bool = False
    content: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @property
    def wire_type(self) -> str:
        if self.uploaded and self.tag != UploadTag.NONE:
            return self.tag
        return AttachmentKind.FILE if self.kind == AttachmentKind.IMAGE else self.kind

    @property
    def needs_caption(self) -> bool:
        """Non-image, non-audio attachments cannot be sent without accompanying text."""
        return self.kind not in (AttachmentKind.IMAGE, AttachmentKind.AUDIO)

    def to_upload(self) -> FileUpload:
        return FileUpload(data=self.data, type=self.wire_type, name=self.name, mime=self.mime)
