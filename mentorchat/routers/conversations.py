from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile

from mentorchat.repositories.document_store import DocumentStore
from mentorchat.schemas.conversation import ConversationListUpdate, StartConversationRequest
from mentorchat.schemas.message import Attachment, Message
from mentorchat.schemas.profile import RecipientInfo
from mentorchat.services.conversation_provisioner import ConversationProvisioner
from mentorchat.services.conversation_sync import ConversationSyncEngine
from mentorchat.services.message_sync import MessageSyncEngine
from mentorchat.utils.blob_storage import BlobStorage
from mentorchat.utils.dependencies import get_blob_storage, get_current_user_id, get_document_store


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("")
async def start_conversation(body: StartConversationRequest, current_user: str = Depends(get_current_user_id), store: DocumentStore = Depends(get_document_store)):
    conversation_id = await ConversationProvisioner(store).get_or_create_conversation(current_user, body.user_id)
    return {"conversation_id": conversation_id}


@router.get("", response_model=ConversationListUpdate)
async def list_conversations(q: Optional[str] = None, current_user: str = Depends(get_current_user_id), store: DocumentStore = Depends(get_document_store)):
    engine = ConversationSyncEngine(store)
    async with await engine.start_listening(current_user) as updates:
        update = await updates.__anext__()
    if q:
        update = update.model_copy(update={"conversations": engine.search(q)})
    return update


@router.get("/recipients/{recipient_id}", response_model=RecipientInfo)
async def recipient(recipient_id: str, current_user: str = Depends(get_current_user_id), store: DocumentStore = Depends(get_document_store), blobs: BlobStorage = Depends(get_blob_storage)):
    engine = MessageSyncEngine(store, blobs, current_user)
    return await engine.load_recipient(recipient_id)


@router.post("/{conversation_id}/messages", response_model=Message, status_code=201)
async def send_message(
    conversation_id: str,
    text: str = Form(""),
    kind: str = Form("document"),
    file: Optional[UploadFile] = File(None),
    current_user: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_document_store),
    blobs: BlobStorage = Depends(get_blob_storage),
):
    attachment = None
    if file is not None:
        attachment = Attachment(
            kind="image" if kind == "image" else "document",
            data=await file.read(),
            filename=file.filename or "attachment",
            content_type=file.content_type or "application/octet-stream",
        )
    engine = MessageSyncEngine(store, blobs, current_user, conversation_id=conversation_id)
    return await engine.send_message(text, attachment)


@router.post("/{conversation_id}/read", status_code=204)
async def mark_read(conversation_id: str, current_user: str = Depends(get_current_user_id), store: DocumentStore = Depends(get_document_store)):
    await store.mark_read(conversation_id, current_user)
    return Response(status_code=204)
