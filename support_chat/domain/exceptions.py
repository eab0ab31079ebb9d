"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 API 层统一捕获，并按 http_status 映射为响应状态码。
"""

from typing import Any, Dict


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 可读错误信息，不得包含任何凭据。
        http_status: 映射到 HTTP 时使用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、model、attempts 等）。
    """

    http_status_default = 400

    def __init__(self, code: str, message: str, http_status: int | None = None, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status if http_status is not None else self.http_status_default
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为可直接作为错误响应体的字典。"""

        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.extra:
            payload["detail"] = self.extra
        return payload


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""

    http_status_default = 502


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误，或响应体无法解析时抛出。"""

    http_status_default = 502


class RateLimitError(BusinessError):
    """Provider 限流错误。网关不做退避，直接切换到下一个模型。"""

    http_status_default = 429


class EmptyReplyError(BusinessError):
    """Provider 调用成功但没有可用的回复内容。"""

    http_status_default = 502


class AllProvidersFailedError(BusinessError):
    """回退列表中所有模型都失败。extra 中携带最后一次失败的详情。"""

    http_status_default = 502


class StoreError(BusinessError):
    """持久化读写失败，对当前请求是致命的。"""

    http_status_default = 500


class DuplicateConversationError(BusinessError):
    """会话 ID 已存在。"""

    http_status_default = 409


class UnknownConversationError(BusinessError):
    """会话 ID 不存在。"""

    http_status_default = 404
