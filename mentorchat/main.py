import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mentorchat.core.config import get_settings
from mentorchat.core.errors import (
    AttachmentUploadFailed,
    ConversationNotFound,
    DataCorrupted,
    DuplicateConversation,
    EmptyMessage,
    InvalidParticipants,
    MessagingError,
    ProfileNotFound,
    SendFailed,
    StoreUnavailable,
)
from mentorchat.core.logging_config import configure_logging
from mentorchat.database.connection import close_mongo_connection, connect_to_mongo, get_client, get_database
from mentorchat.repositories.document_store import MongoDocumentStore
from mentorchat.routers.attachments import router as attachments_router
from mentorchat.routers.chat import router as chat_router
from mentorchat.routers.conversations import router as conversations_router
from mentorchat.utils.realtime_bus import close_bus, get_bus

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidParticipants: 400,
    EmptyMessage: 400,
    ConversationNotFound: 404,
    ProfileNotFound: 404,
    AttachmentUploadFailed: 502,
    SendFailed: 503,
    StoreUnavailable: 503,
    DataCorrupted: 500,
    DuplicateConversation: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging()
    await connect_to_mongo()
    store = MongoDocumentStore(get_database(), await get_bus(), client=get_client())
    await store.ensure_indexes()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Mentor messaging", lifespan=lifespan)


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.message})


app.include_router(conversations_router)
app.include_router(chat_router)
app.include_router(attachments_router)


@app.get("/")
async def root():

    return {"message": "Mentor messaging is running", "database": get_settings().mongo_db_name}
