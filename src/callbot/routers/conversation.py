import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from callbot.schemas.conversation import ReplySegment
from callbot.services.conversation_session import ConversationSession
from callbot.services.events import ERROR, REPLY_SEGMENT

router = APIRouter(prefix="/api/conversation", tags=["Conversation"])
logger = logging.getLogger(__name__)


async def handle_connection(websocket: WebSocket, session: ConversationSession):
    """
    Main loop for a single client's WebSocket connection.

    Each utterance is answered in a background task so the socket keeps
    reading; an utterance that arrives while the session is still answering
    is dropped by the session itself. In-flight turns are never cancelled:
    on stop or disconnect the loop waits for them before disposing the session.
    """
    pending: set[asyncio.Task] = set()
    turn_counter = 0

    async def send(message: dict):
        if websocket.client_state != WebSocketState.CONNECTED:
            logger.debug(f"Socket closed, dropping {message.get('type')} message")
            return
        await websocket.send_json(message)

    async def forward_segment(segment: ReplySegment, turn_number: int):
        await send(
            {
                "type": "reply_segment",
                "turn": turn_number,
                "segment_index": segment.segment_index,
                "text": segment.text,
                "session_tag": segment.session_tag,
            }
        )

    async def forward_error(error: Exception):
        await send({"type": "error", "message": str(error)})

    session.on(REPLY_SEGMENT, forward_segment)
    session.on(ERROR, forward_error)

    async def answer(text: str, turn_number: int, role: str):
        answered = await session.submit_turn(text, turn_number, role=role)
        # A dropped turn must not trim under the turn that is still streaming.
        if answered and session.should_trim():
            logger.info(f"Transcript exceeded threshold after turn {turn_number}, resetting")
            session.reset()
        await send({"type": "turn_end", "turn": turn_number})

    try:
        while True:
            data = await websocket.receive_json()
            event_type = data.get("type")

            if event_type == "utterance":
                text = (data.get("text") or "").strip()
                if not text:
                    logger.debug("Ignoring empty utterance")
                    continue
                turn_counter += 1
                turn_number = data.get("turn", turn_counter)
                role = data.get("role") or "user"

                task = asyncio.create_task(answer(text, turn_number, role))
                pending.add(task)
                task.add_done_callback(pending.discard)

            elif event_type == "reset":
                session.reset()

            elif event_type == "stop":
                logger.info(f"Stop requested for session {session.session_tag}")
                break

            else:
                logger.warning(f"Unknown message type: {event_type}")

    except WebSocketDisconnect:
        logger.info(f"Client for session {session.session_tag} disconnected")
    finally:
        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Turn task failed: {result}")
        session.dispose()


@router.websocket("/ws")
async def conversation_socket(websocket: WebSocket):
    factory = getattr(websocket.app.state, "session_factory", None)
    if factory is None:
        logger.error("Session factory not initialized")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    session: ConversationSession = factory()
    session_tag: Optional[str] = websocket.query_params.get("session_tag")
    if session_tag:
        session.set_session_tag(session_tag)

    await handle_connection(websocket, session)
    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close()
