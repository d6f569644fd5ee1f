from fastapi import APIRouter, Depends, HTTPException, Response

from mentorchat.utils.blob_storage import AttachmentNotFound, GridFSBlobStorage
from mentorchat.utils.dependencies import get_blob_storage


router = APIRouter(prefix="/attachments", tags=["attachments"])


@router.get("/{file_id}")
async def download_attachment(file_id: str, storage: GridFSBlobStorage = Depends(get_blob_storage)):
    try:
        data, content_type, filename = await storage.download(file_id)
    except AttachmentNotFound:
        raise HTTPException(status_code=404, detail="Attachment not found")
    return Response(content=data, media_type=content_type, headers={"Content-Disposition": f'inline; filename="{filename}"'})
