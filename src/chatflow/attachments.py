"""
Attachment pipeline — classify, encode and upload drafts before a turn is sent.

Staging a batch is all-or-nothing: one rejected file discards the whole
selection. Accepted files are read concurrently and a failed read only loses
that file. Uploads run once per turn, full-file ingestion first, then RAG
ingestion followed by a settle wait for the index to catch up.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from typing import Iterable, Optional

from chatflow.errors import AttachmentRejectedError, ChatflowError, UploadError
from chatflow.flows import FlowsAPI
from chatflow.models.attachment import Attachment, AttachmentKind, LocalFile, UploadTag
from chatflow.models.flow import UploadConstraints
from chatflow.transport.http import FilePart

logger = logging.getLogger(__name__)

DEFAULT_RAG_SETTLE_SECONDS = 2.5
AUDIO_PREVIEW = "static/audio-upload.svg"
REJECTION_WARNING = "Cannot upload file. Kindly check the allowed file types and maximum allowed size."

URI_LIST = "text/uri-list"
HTML = "text/html"
_HREF = re.compile(r"""href\s*=\s*(?:"([^"]*)"|'([^']*)')""", re.IGNORECASE)


def classify(file: LocalFile, constraints: UploadConstraints, full_file_upload: bool = False) -> bool:
    """Whether `file` may be staged. Pure: no I/O, no side effects."""
    if full_file_upload:
        return True
    if constraints.is_image_upload_allowed:
        size_mb = file.size / 1024 / 1024
        for rule in constraints.img_upload_size_and_types:
            if file.mime in rule.file_types and size_mb <= rule.max_upload_size:
                return True
    if constraints.is_rag_file_upload_allowed:
        ext = f".{file.extension}"
        for rule in constraints.file_upload_size_and_types:
            if rule.is_wildcard or ext in rule.file_types:
                return True
    return False


def upload_tag(file: LocalFile, constraints: UploadConstraints, full_file_upload: bool = False) -> str:
    """Anything the image rules don't cover goes through document ingestion."""
    if file.mime and file.mime in constraints.image_mime_types:
        return UploadTag.NONE
    return UploadTag.FULL if full_file_upload else UploadTag.RAG


def _data_url(mime: str, content: bytes) -> str:
    return f"data:{mime or 'application/octet-stream'};base64,{base64.b64encode(content).decode('ascii')}"


async def encode(file: LocalFile, tag: str = UploadTag.NONE) -> Attachment:
    content = await file.read()
    data = _data_url(file.mime, content)
    if file.mime.startswith("audio/"):
        kind, preview = AttachmentKind.AUDIO, AUDIO_PREVIEW
    elif file.mime.startswith("image/"):
        kind, preview = AttachmentKind.IMAGE, data
    else:
        kind, preview = AttachmentKind.FILE, data
    return Attachment(kind=kind, data=data, preview=preview, name=file.name, mime=file.mime, tag=tag, content=content)


def encode_recording(content: bytes, mime: str) -> Attachment:
    """Recorded audio blob; codec parameters are dropped from the mime type."""
    mime = mime.split(";", 1)[0]
    return Attachment(
        kind=AttachmentKind.AUDIO,
        data=_data_url(mime, content),
        preview=AUDIO_PREVIEW,
        name=f"audio_{int(time.time() * 1000)}.wav",
        mime=mime,
        content=content,
    )


def encode_fragment(mime_type: str, text: str) -> Optional[Attachment]:
    """Dragged text: a uri-list is used verbatim, html contributes its href, anything else is ignored."""
    url: Optional[str] = None
    if mime_type.startswith(URI_LIST):
        url = text
    elif mime_type.startswith(HTML):
        match = _HREF.search(text)
        if match:
            url = match.group(1) if match.group(1) is not None else match.group(2)
    if not url:
        return None
    return Attachment(kind=AttachmentKind.URL, data=url, preview=url, name=url[url.rfind("/") + 1:])


class AttachmentPipeline:
    def __init__(self, api: FlowsAPI, rag_settle_seconds: float = DEFAULT_RAG_SETTLE_SECONDS):
        self._api = api
        self.rag_settle_seconds = rag_settle_seconds

    async def stage(
        self,
        files: Iterable[LocalFile],
        constraints: UploadConstraints,
        full_file_upload: bool = False,
    ) -> list[Attachment]:
        """Classify the whole batch, then encode every file concurrently."""
        batch = list(files)
        for file in batch:
            if not classify(file, constraints, full_file_upload):
                raise AttachmentRejectedError(REJECTION_WARNING, file_name=file.name)

        results = await asyncio.gather(
            *(encode(f, upload_tag(f, constraints, full_file_upload)) for f in batch),
            return_exceptions=True,
        )
        drafts: list[Attachment] = []
        for file, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.warning("Could not read %s: %s", file.name, result)
                continue
            drafts.append(result)
        return drafts

    async def upload(
        self,
        drafts: list[Attachment],
        *,
        flow_id: str,
        chat_id: str,
        full_file_upload: bool = False,
        rag_upload_allowed: bool = False,
    ) -> list[Attachment]:
        """Finalize drafts for sending. Any failed upload call raises UploadError."""
        finalized = list(drafts)
        try:
            if full_file_upload:
                finalized = await self._upload_full(finalized, flow_id, chat_id)
            elif rag_upload_allowed:
                finalized = await self._upload_rag(finalized, flow_id, chat_id)
        except ChatflowError as e:
            logger.error("Attachment upload failed for flow %s: %s", flow_id, e)
            raise UploadError(details={"cause": str(e)})
        return finalized

    async def _upload_full(self, drafts: list[Attachment], flow_id: str, chat_id: str) -> list[Attachment]:
        pending = [d for d in drafts if d.tag == UploadTag.FULL]
        if not pending:
            return drafts
        records = await self._api.create_attachments(flow_id, chat_id, _file_parts(pending))
        by_name = {r.get("name"): r.get("content", "") for r in records if isinstance(r, dict)}
        result: list[Attachment] = []
        for draft in drafts:
            if draft.tag == UploadTag.FULL and draft.name in by_name:
                draft = draft.model_copy(update={"data": by_name[draft.name], "uploaded": True})
            result.append(draft)
        unmatched = [d.name for d in pending if d.name not in by_name]
        if unmatched:
            logger.info("No extracted content returned for %s", ", ".join(unmatched))
        return result

    async def _upload_rag(self, drafts: list[Attachment], flow_id: str, chat_id: str) -> list[Attachment]:
        pending = [d for d in drafts if d.tag == UploadTag.RAG]
        if not pending:
            return drafts
        await self._api.upsert_vector_store(flow_id, chat_id, _file_parts(pending))
        # TODO: replace the fixed wait once the indexing backend can report readiness per file
        await asyncio.sleep(self.rag_settle_seconds)
        return [
            d.model_copy(update={"uploaded": True}) if d.tag == UploadTag.RAG else d
            for d in drafts
        ]


def _file_parts(drafts: list[Attachment]) -> list[FilePart]:
    return [("files", (d.name, d.content or b"", d.mime or "application/octet-stream")) for d in drafts]
