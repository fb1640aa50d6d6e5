"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在服务层或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class CredentialMissing(BusinessError):
    """未能解析到生成服务的 API 密钥，需要用户重新输入。"""

    def __init__(self, message: str = "Gemini API key not set", **extra):
        super().__init__(code="MISSING_API_KEY", message=message, http_status=401, **extra)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class StreamTimeout(NetworkError):
    """流式响应在规定时间内没有结束。"""


class RequestFailed(BusinessError):
    """生成服务返回非 2xx 状态码时抛出，携带原始响应体。"""

    def __init__(self, status: int, body: str, code: str = "REQUEST_FAILED", **extra):
        super().__init__(code=code, message=f"API error: {status} {body}", http_status=status, **extra)
        self.status = status
        self.body = body


class RateLimitError(RequestFailed):
    """Provider 限流错误（429），由上层决定是否重试。"""

    def __init__(self, status: int, body: str, **extra):
        super().__init__(status, body, code="RATE_LIMIT", **extra)


class EmptyBody(BusinessError):
    """响应成功但没有任何可读取的内容。"""

    def __init__(self, message: str = "Response body is empty", **extra):
        super().__init__(code="EMPTY_BODY", message=message, http_status=502, **extra)


class PersistenceError(BusinessError):
    """远端或本地存储读写失败。"""


class NotFoundError(PersistenceError):
    """会话不存在，或不属于当前用户。"""


class AuthRequired(BusinessError):
    """当前没有已认证的用户身份，操作在访问存储前被拦截。"""

    def __init__(self, message: str = "You must be logged in", **extra):
        super().__init__(code="AUTH_REQUIRED", message=message, http_status=401, **extra)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class TransientParseIncomplete(Exception):
    """流缓冲区中的片段还不是完整的 JSON 记录。

    这不是业务错误：解码循环内部捕获后保留片段，等待下一次读取再重试。
    """
