"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 UI 层做统一捕获与用户提示。任何错误都不应导致进程退出。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "CHAT_NOT_FOUND"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 chat_id、model 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数校验失败或 id 不存在（调用方错误，不会破坏状态）。"""

    def __init__(self, code: str = "VALIDATION_ERROR", message: str = "invalid input", **extra):
        super().__init__(code=code, message=message, http_status=400, **extra)


class BusyError(BusinessError):
    """已有一次发送在进行中。"""

    def __init__(self, message: str = "another message is being sent", **extra):
        super().__init__(code="BUSY", message=message, http_status=409, **extra)


class ApiError(BusinessError):
    """第三方 API 返回非 2xx 状态码时抛出。"""

    def __init__(self, status_code: int, message: str = "", **extra):
        super().__init__(
            code="API_ERROR",
            message=message or f"API Error: {status_code}",
            http_status=status_code,
            **extra,
        )
        self.status_code = status_code


class TransportError(BusinessError):
    """网络层错误或响应无法解析。cause 保存原始异常。"""

    def __init__(self, cause: Optional[BaseException] = None, message: str = "", **extra):
        super().__init__(
            code="TRANSPORT_ERROR",
            message=message or (str(cause) if cause else "") or "transport failure",
            http_status=502,
            **extra,
        )
        self.cause = cause


class PersistenceError(BusinessError):
    """快照文件读写失败。上层记录日志后继续使用内存状态。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="PERSISTENCE_ERROR", message=message, http_status=500, **extra)


class MigrationError(BusinessError):
    """旧版快照格式损坏，无法迁移。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="MIGRATION_ERROR", message=message, http_status=500, **extra)


class SendCancelledError(BusinessError):
    """发送在提交前被取消（消息已回滚）。"""

    def __init__(self, message: str = "send cancelled", **extra):
        super().__init__(code="SEND_CANCELLED", message=message, http_status=499, **extra)
