import asyncio
import contextlib
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from mentorchat.core.errors import MessagingError
from mentorchat.repositories.document_store import DocumentStore
from mentorchat.schemas.conversation import ConversationsFrame
from mentorchat.schemas.message import SendMessageFrame
from mentorchat.services.conversation_sync import ConversationSyncEngine
from mentorchat.services.message_sync import MessageSyncEngine
from mentorchat.services.sync_handle import SyncHandle
from mentorchat.utils.blob_storage import BlobStorage
from mentorchat.utils.dependencies import get_blob_storage, get_document_store


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["chat"])

INVALID_FRAME = json.dumps({"type": "error", "error": "invalid_frame", "detail": "Invalid message payload"})


def _error_frame(error: MessagingError) -> str:
    return json.dumps({"type": "error", "error": error.code, "detail": error.message})


async def _forward(websocket: WebSocket, updates: SyncHandle, frame_type: str) -> None:
    try:
        try:
            async for update in updates:
                await websocket.send_text(json.dumps({"type": frame_type, "data": update.model_dump(mode="json")}))
        except MessagingError as exc:
            # listener failed; the client reconnects to retry
            logger.info("Closing %s stream: %s", frame_type, exc.code)
            await websocket.send_text(_error_frame(exc))
            await websocket.close(code=1011)
    except (WebSocketDisconnect, RuntimeError):
        logger.debug("Client left the %s stream", frame_type)


async def _stop_forwarding(updates: SyncHandle, forward_task: "asyncio.Task[None]") -> None:
    updates.close()
    forward_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await forward_task


@router.websocket("/conversations")
async def conversations_socket(websocket: WebSocket, store: DocumentStore = Depends(get_document_store)):
    user_id = websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return
    await websocket.accept()

    engine = ConversationSyncEngine(store)
    updates = await engine.start_listening(user_id)
    forward_task = asyncio.create_task(_forward(websocket, updates, "conversations"))
    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = ConversationsFrame.model_validate_json(data)
            except ValidationError:
                await websocket.send_text(INVALID_FRAME)
                continue
            if frame.type == "search":
                results = [c.model_dump(mode="json") for c in engine.search(frame.query)]
                await websocket.send_text(json.dumps({"type": "search", "data": results}))
    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        await _stop_forwarding(updates, forward_task)


@router.websocket("/conversations/{conversation_id}")
async def conversation_socket(
    websocket: WebSocket,
    conversation_id: str,
    store: DocumentStore = Depends(get_document_store),
    blobs: BlobStorage = Depends(get_blob_storage),
):
    user_id = websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return
    await websocket.accept()

    engine = MessageSyncEngine(store, blobs, user_id)
    updates = await engine.start_listening(conversation_id)
    forward_task = asyncio.create_task(_forward(websocket, updates, "messages"))
    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = SendMessageFrame.model_validate_json(data)
            except ValidationError:
                await websocket.send_text(INVALID_FRAME)
                continue
            try:
                message = await engine.send_message(frame.text)
            except MessagingError as exc:
                await websocket.send_text(_error_frame(exc))
                continue
            await websocket.send_text(json.dumps({"type": "ack", "data": message.model_dump(mode="json")}))
    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        await _stop_forwarding(updates, forward_task)
