import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from pagechat.dependencies import get_llm_router
from pagechat.errors import ConfigurationError, NetworkError
from pagechat.models.domain_models import HistoryItem, PageContext
from pagechat.models.schemas import ChatRequest
from pagechat.services.llm_router import LLMRouter
from pagechat.services.stream_normalizer import Error, Fragment, NormalizedEvent

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"])

DONE_MARKER = "[DONE]"


def to_sse(event: NormalizedEvent) -> dict:
    """One SSE record per event: ``{"token"}``, ``{"error"}`` or the done marker."""
    if isinstance(event, Fragment):
        return {"data": json.dumps({"token": event.text})}
    if isinstance(event, Error):
        return {"data": json.dumps({"error": event.message})}
    return {"data": DONE_MARKER}


@router.post("/chat-stream")
async def chat_stream(
    request: ChatRequest,
    llm_router: LLMRouter = Depends(get_llm_router),
):
    """Answer a question about a page, streamed as SSE ``data:`` records."""
    page = PageContext(title=request.title, url=request.url, text=request.text)
    history = [HistoryItem(type=h.type, content=h.content) for h in request.history]

    try:
        provider_id, config = llm_router.resolve(request.provider)
        conversation = llm_router.build_conversation(
            config, page, request.question, history
        )
        logger.info(
            f"Provider: {provider_id} ({config.model}), page: {request.title[:50]!r}, "
            f"history: {len(history)} messages"
        )
        stream = await llm_router.open_stream(provider_id, config, conversation)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NetworkError as e:
        logger.error("Provider unreachable: %s", e)
        raise HTTPException(status_code=502, detail=str(e))

    async def event_generator():
        try:
            async for event in stream:
                yield to_sse(event)
        except Exception as e:
            logger.exception("Chat streaming failed")
            yield {"data": json.dumps({"error": str(e)})}
        finally:
            await stream.aclose()

    # The generator may never start if the client leaves early
    cleanup = BackgroundTasks()
    cleanup.add_task(stream.aclose)
    return EventSourceResponse(event_generator(), background=cleanup)
