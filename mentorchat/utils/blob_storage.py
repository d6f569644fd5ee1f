from typing import Protocol, Tuple

from bson import ObjectId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket


class BlobStorage(Protocol):

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        """Store ``data`` and return its download URL."""
        ...


class AttachmentNotFound(LookupError):
    pass


class GridFSBlobStorage:
    """Attachment storage in a GridFS bucket, served back by ``GET /attachments/{id}``."""

    def __init__(self, db: AsyncIOMotorDatabase, bucket_name: str, public_base_url: str) -> None:
        self._bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)
        self._base_url = public_base_url.rstrip("/")

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        file_id = await self._bucket.upload_from_stream(path, data, metadata={"content_type": content_type})
        return f"{self._base_url}/attachments/{file_id}"

    async def download(self, file_id: str) -> Tuple[bytes, str, str]:
        if not ObjectId.is_valid(file_id):
            raise AttachmentNotFound(file_id)
        try:
            grid_out = await self._bucket.open_download_stream(ObjectId(file_id))
        except NoFile as exc:
            raise AttachmentNotFound(file_id) from exc
        data = await grid_out.read()
        metadata = grid_out.metadata or {}
        filename = grid_out.filename.rsplit("/", 1)[-1]
        return data, metadata.get("content_type", "application/octet-stream"), filename
