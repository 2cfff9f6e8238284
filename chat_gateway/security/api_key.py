"""简单的 API Key 鉴权。

- owner key：不做过期检查，直接放行。
- guest key：精确匹配且 expires_utc 严格晚于当前时间才放行。
- CORS 预检、健康检查、文档与静态根路径不需要 key。

拒绝时只返回通用的 "Unauthorized"，不提示 key 是否存在或已过期。
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from chat_gateway.config.settings import ApiKeyConfig
from chat_gateway.domain.exceptions import UnauthorizedError
from chat_gateway.infrastructure.logging.logger import logger

BYPASS_PREFIXES = ("/swagger", "/docs", "/redoc", "/openapi.json", "/healthz", "/index.html", "/favicon.ico")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiKeyGate:
    """无状态的 API Key 校验，配置在构造时传入且只读。"""

    def __init__(self, config: ApiKeyConfig, clock: Callable[[], datetime] = _utcnow):
        self._config = config
        self._clock = clock

    @property
    def header_name(self) -> str:
        return self._config.header_name

    @staticmethod
    def is_bypassed(method: str, path: str) -> bool:
        if method.upper() == "OPTIONS":
            return True
        path = (path or "").lower()
        return path == "/" or path.startswith(BYPASS_PREFIXES)

    def check(self, provided: Optional[str]) -> str:
        """校验 key，返回 key 类型 "owner"/"guest"，失败抛出 UnauthorizedError。"""

        if provided is None or not provided.strip():
            raise UnauthorizedError("missing")
        owner = self._config.owner_key
        if owner and provided == owner:
            return "owner"
        now = self._clock()
        for guest in self._config.guests:
            if guest.key == provided:
                if guest.expires_utc > now:
                    return "guest"
                raise UnauthorizedError("expired")
        raise UnauthorizedError("invalid")

    def guest_label(self, provided: str) -> str:
        for guest in self._config.guests:
            if guest.key == provided:
                return guest.label
        return ""


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """在路由之前执行 ApiKeyGate。"""

    def __init__(self, app, gate: ApiKeyGate):
        super().__init__(app)
        self._gate = gate

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if self._gate.is_bypassed(request.method, path):
            return await call_next(request)

        provided = request.headers.get(self._gate.header_name)
        try:
            key_type = self._gate.check(provided)
        except UnauthorizedError as e:
            logger.warning(
                "API auth FAIL",
                extra={"extra": {"path": path, "reason": e.extra.get("reason"), "header": self._gate.header_name}},
            )
            return PlainTextResponse("Unauthorized", status_code=401)

        info = {"path": path, "key_type": key_type}
        if key_type == "guest":
            info["guest_label"] = self._gate.guest_label(provided or "")
        logger.info("API auth OK", extra={"extra": info})
        return await call_next(request)
