"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层做统一捕获与用户提示。任何错误都不会触发自动重试或切换 Provider。
"""

from typing import Iterable


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "UPSTREAM_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、上游状态码等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class UnknownProviderError(BusinessError):
    """请求的 Provider 没有出现在配置中，调用方可换一个名称重试。"""

    def __init__(self, name: str, configured: Iterable[str]):
        names = list(configured)
        super().__init__(
            code="UNKNOWN_PROVIDER",
            message=(
                f"Unknown AI provider {name!r}. Configured providers: [{', '.join(names)}]. "
                "Check 'providers' in configuration."
            ),
            http_status=400,
            provider=name,
            configured=names,
        )


class UnimplementedProviderError(BusinessError):
    """Provider 已配置，但没有注册对应的适配器（需运维修复配置）。"""

    def __init__(self, name: str):
        super().__init__(
            code="UNIMPLEMENTED_PROVIDER",
            message=f"Provider {name!r} has no adapter registered.",
            http_status=501,
            provider=name,
        )


class UnauthorizedError(BusinessError):
    """API Key 校验失败。对外只返回通用提示，不暴露 key 是否存在或过期。"""

    def __init__(self, reason: str = "missing/expired/invalid"):
        super().__init__(code="UNAUTHORIZED", message="Unauthorized", http_status=401, reason=reason)


class UpstreamError(BusinessError):
    """厂商 API 返回非 2xx 状态码。"""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        super().__init__(
            code="UPSTREAM_ERROR",
            message=f"{provider} returned HTTP {status_code}: {body[:400]}",
            http_status=502,
            provider=provider,
            upstream_status=status_code,
        )


class MalformedResponseError(BusinessError):
    """厂商响应缺少预期的 JSON 字段。"""

    def __init__(self, provider: str, detail: str):
        super().__init__(
            code="MALFORMED_RESPONSE",
            message=f"{provider} response malformed: {detail}",
            http_status=502,
            provider=provider,
        )


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
