"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层、流式中继或客户端做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 run_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败，在打开流之前拒绝请求。"""


class AuthError(BusinessError):
    """未认证请求，在打开流之前拒绝。"""

    def __init__(self, message: str = "Unauthorized", **extra):
        super().__init__(code="UNAUTHORIZED", message=message, http_status=401, **extra)


class EngineFatalError(BusinessError):
    """模型调用失败，当前运行立即终止（不重试）。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="ENGINE_FATAL", message=message, http_status=500, **extra)


class ToolError(BusinessError):
    """工具执行失败。非致命：错误会作为工具结果回填给模型。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="TOOL_ERROR", message=message, **extra)


class TransportError(BusinessError):
    """写入/关闭传输通道失败（通常是客户端断开）。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="TRANSPORT_ERROR", message=message, http_status=499, **extra)


class StoreError(BusinessError):
    """持久化存储读写失败。"""
