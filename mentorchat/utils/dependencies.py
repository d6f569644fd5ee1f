from fastapi import Depends, Header, HTTPException

from mentorchat.core.config import get_settings
from mentorchat.database.connection import get_client, mongo_db_dependency
from mentorchat.repositories.document_store import MongoDocumentStore
from mentorchat.utils.blob_storage import GridFSBlobStorage
from mentorchat.utils.realtime_bus import get_bus


async def get_current_user_id(x_user_id: str = Header("")) -> str:
    # identity is established upstream by the auth provider
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


async def get_document_store(db = Depends(mongo_db_dependency)) -> MongoDocumentStore:
    settings = get_settings()
    return MongoDocumentStore(db, await get_bus(), client=get_client(), use_transactions=settings.use_transactions)


def get_blob_storage(db = Depends(mongo_db_dependency)) -> GridFSBlobStorage:
    settings = get_settings()
    return GridFSBlobStorage(db, settings.attachment_bucket, settings.public_base_url)
