"""HTTP 接口（FastAPI）。

- POST /chat/complete      非流式对话
- POST /chat/stream        SSE 流式对话
- POST /chat/new-session   生成新会话 id
- POST /chat/reset         清空会话
- GET  /chat/history       查看会话历史
- GET  /healthz            存活探针（无需 API Key）

运行：uvicorn chat_gateway.api.app:app
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from chat_gateway import __version__
from chat_gateway.api.service import ChatService, new_session_id
from chat_gateway.config.settings import Settings, settings as default_settings
from chat_gateway.domain.exceptions import BusinessError
from chat_gateway.domain.models import ChatMessage
from chat_gateway.domain.session import SessionStore
from chat_gateway.infrastructure.logging.logger import logger
from chat_gateway.infrastructure.storage.memory_store import InMemorySessionStore
from chat_gateway.providers import ProviderFactory
from chat_gateway.security.api_key import ApiKeyGate, ApiKeyMiddleware

COOKIE_MAX_AGE = 2 * 24 * 3600
DISCONNECT_POLL_SECONDS = 0.5
# nginx 约定：客户端在响应前断开
CLIENT_CLOSED_STATUS = 499


class MessageIn(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = ""


class ChatRequest(BaseModel):
    messages: List[MessageIn] = Field(default_factory=list)
    # 可选的 provider 覆盖，例如 "Claude" / "OpenAI"
    provider: Optional[str] = None

    def to_messages(self) -> List[ChatMessage]:
        return [ChatMessage.create(m.role, m.content) for m in self.messages]


class ChatResponse(BaseModel):
    text: str
    sessionId: str


router = APIRouter(prefix="/chat")


def get_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def resolve_session(request: Request, session_id: Optional[str]) -> Tuple[str, bool]:
    """会话 id：查询参数 → cookie → 新生成。返回 (sid, 是否新生成)。"""

    cookie_name = request.app.state.settings.session_cookie_name
    sid = (session_id or "").strip() or (request.cookies.get(cookie_name) or "").strip()
    if sid:
        return sid, False
    return new_session_id(), True


@asynccontextmanager
async def watch_disconnect(request: Request, interval: float = DISCONNECT_POLL_SECONDS) -> AsyncIterator[asyncio.Event]:
    """轮询客户端是否断开，断开时置位返回的取消信号。"""

    cancel = asyncio.Event()

    async def poll() -> None:
        while not cancel.is_set():
            if await request.is_disconnected():
                cancel.set()
                return
            await asyncio.sleep(interval)

    task = asyncio.create_task(poll())
    try:
        yield cancel
    finally:
        task.cancel()


def _set_session_cookie(request: Request, response: Response, sid: str, max_age: Optional[int] = None) -> None:
    name = request.app.state.settings.session_cookie_name
    response.set_cookie(name, sid, max_age=max_age, secure=True, samesite="lax", httponly=False)


@router.post("/complete", response_model=ChatResponse)
async def complete(
    body: ChatRequest,
    request: Request,
    response: Response,
    sessionId: Optional[str] = Query(default=None),
    provider: Optional[str] = Query(default=None),
    service: ChatService = Depends(get_service),
):
    sid, created = resolve_session(request, sessionId)
    if created:
        _set_session_cookie(request, response, sid, max_age=COOKIE_MAX_AGE)
    async with watch_disconnect(request) as cancel:
        try:
            text = await service.complete(sid, body.to_messages(), provider=body.provider or provider, cancel=cancel)
        except asyncio.CancelledError:
            if not cancel.is_set():
                raise
            logger.info("client disconnected", extra={"extra": {"session_id": sid, "path": request.url.path}})
            return Response(status_code=CLIENT_CLOSED_STATUS)
    return ChatResponse(text=text, sessionId=sid)


@router.post("/stream")
async def stream(
    body: ChatRequest,
    request: Request,
    sessionId: Optional[str] = Query(default=None),
    provider: Optional[str] = Query(default=None),
    service: ChatService = Depends(get_service),
):
    messages = body.to_messages()
    chosen = body.provider or provider
    service.check_request(messages, chosen)

    sid, created = resolve_session(request, sessionId)

    async def event_stream():
        async with watch_disconnect(request) as cancel:
            try:
                async for token in service.stream(sid, messages, provider=chosen, cancel=cancel):
                    yield f"data: {json.dumps({'text': token}, ensure_ascii=False)}\n\n"
            except BusinessError as e:
                logger.warning("stream aborted", extra={"extra": {"session_id": sid, "code": e.code}})
                yield f"data: {json.dumps({'error': e.code, 'message': e.message}, ensure_ascii=False)}\n\n"
                return
            if cancel.is_set():
                return
        yield "data: [DONE]\n\n"

    resp = StreamingResponse(event_stream(), media_type="text/event-stream")
    resp.headers["X-Session-Id"] = sid
    if created:
        _set_session_cookie(request, resp, sid, max_age=COOKIE_MAX_AGE)
    return resp


@router.post("/new-session")
async def new_session(request: Request, response: Response):
    sid = new_session_id()
    _set_session_cookie(request, response, sid)
    return {"sessionId": sid}


@router.post("/reset", status_code=204)
async def reset(sessionId: str = Query(...), service: ChatService = Depends(get_service)):
    await service.reset(sessionId)
    return Response(status_code=204)


@router.get("/history")
async def history(sessionId: str = Query(...), service: ChatService = Depends(get_service)):
    messages = await service.history(sessionId)
    return {
        "sessionId": sessionId,
        "messages": [{"role": m.role, "content": m.content} for m in messages],
    }


async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
    logger.warning(
        exc.message,
        extra={"extra": {"code": exc.code, "path": request.url.path}},
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={"status": "error", "code": exc.code, "message": exc.message},
    )


def create_app(
    cfg: Optional[Settings] = None,
    factory: Optional[ProviderFactory] = None,
    store: Optional[SessionStore] = None,
    gate: Optional[ApiKeyGate] = None,
) -> FastAPI:
    """构建 FastAPI 应用，配置在此一次性注入，之后只读。"""

    cfg = cfg or default_settings
    factory = factory or ProviderFactory(
        providers=cfg.providers,
        default_provider=cfg.default_provider,
        timeout=cfg.http_timeout,
    )
    store = store or InMemorySessionStore(ttl_seconds=cfg.session_ttl_seconds)
    gate = gate or ApiKeyGate(cfg.api_keys)

    app = FastAPI(title="Chat Gateway", version=__version__)
    app.state.settings = cfg
    app.state.chat_service = ChatService(factory, store, history_max_messages=cfg.history_max_messages)

    app.add_middleware(ApiKeyMiddleware, gate=gate)
    app.add_exception_handler(BusinessError, business_error_handler)
    app.include_router(router)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    return app


app = create_app()
