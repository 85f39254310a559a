import logging
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from skillswap.core.errors import NotFound, PartialSideEffect, SwapChatError, run_query
from .schemas import AttachmentUpload, FailedAttachment

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def is_image(file_type: str) -> bool:
    return file_type.startswith("image/")


def is_document(file_type: str) -> bool:
    return file_type in DOCUMENT_TYPES


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value, exponent = float(size), 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"


def build_storage_path(
    message_id: str, file_name: str, now_ms: Optional[int] = None, index: int = 0
) -> str:
    """``<message_id>/<message_id>_<epoch_ms>_<index>.<ext>``

    ``index`` is the file's position within one send, so files uploaded in
    the same millisecond never share a path.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    ext = file_name.rsplit(".", 1)[-1] if "." in file_name else "bin"
    return f"{message_id}/{message_id}_{now_ms}_{index}.{ext}"


class AttachmentStore:
    """
    Links uploaded files to an existing message.

    Raw bytes go to the object store bucket; only the resulting path and
    public url are persisted in ``message_attachments``.
    """

    def __init__(self, client, bucket: str = "message-attachments"):
        self.client = client
        self.bucket = bucket

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    def attach(self, message_id: str, upload: AttachmentUpload, index: int = 0) -> dict:
        path = build_storage_path(message_id, upload.file_name, index=index)

        try:
            self._bucket().upload(
                path,
                upload.data,
                {
                    "content-type": upload.file_type,
                    "cache-control": "3600",
                    "upsert": "false",
                },
            )
            url = self._bucket().get_public_url(path)
        except Exception as error:
            raise PartialSideEffect(
                f"Upload failed: {error}", file_name=upload.file_name
            ) from error

        try:
            res = run_query(
                self.client.table("message_attachments").insert(
                    {
                        "message_id": message_id,
                        "file_name": upload.file_name,
                        "file_type": upload.file_type,
                        "file_size": upload.size,
                        "storage_path": path,
                        "url": url,
                    }
                ),
                "record attachment",
            )
        except SwapChatError as error:
            self._remove_orphan(path)
            raise PartialSideEffect(error.detail, file_name=upload.file_name) from error

        return res.data[0]

    def _remove_orphan(self, path: str):
        try:
            self._bucket().remove([path])
        except Exception:
            logger.exception(f"attachment_orphan_cleanup_failed path={path}")

    def attach_all(
        self, message_id: str, uploads: Iterable[AttachmentUpload]
    ) -> tuple[List[dict], List[FailedAttachment]]:
        """Each upload is independent; failures are reported, not retried."""
        stored, failed = [], []

        for index, upload in enumerate(uploads):
            try:
                stored.append(self.attach(message_id, upload, index=index))
            except PartialSideEffect as error:
                logger.warning(
                    f"attachment_dropped message_id={message_id} "
                    f"file={error.file_name} reason={error.detail}"
                )
                failed.append(FailedAttachment(file_name=upload.file_name, reason=error.detail))

        return stored, failed

    def for_message(self, message_id: str) -> List[dict]:
        res = run_query(
            self.client.table("message_attachments")
            .select("*")
            .eq("message_id", message_id)
            .order("created_at", desc=False),
            "load attachments",
        )
        return res.data or []

    def for_messages(self, message_ids: List[str]) -> Dict[str, List[dict]]:
        if not message_ids:
            return {}

        res = run_query(
            self.client.table("message_attachments")
            .select("*")
            .in_("message_id", list(message_ids))
            .order("created_at", desc=False),
            "load attachments",
        )

        grouped = defaultdict(list)
        for row in res.data or []:
            grouped[row["message_id"]].append(row)
        return dict(grouped)

    def get(self, attachment_id: str) -> dict:
        res = run_query(
            self.client.table("message_attachments")
            .select("*")
            .eq("id", attachment_id)
            .limit(1),
            "load attachment",
        )
        if not res.data:
            raise NotFound("Attachment not found")
        return res.data[0]

    def delete(self, attachment_id: str) -> bool:
        attachment = self.get(attachment_id)

        try:
            self._bucket().remove([attachment["storage_path"]])
        except Exception as error:
            logger.error(f"attachment_delete_failed id={attachment_id} error={error}")
            raise PartialSideEffect(
                "Could not delete attachment file.", file_name=attachment["file_name"]
            ) from error

        run_query(
            self.client.table("message_attachments").delete().eq("id", attachment_id),
            "delete attachment",
        )
        return True
