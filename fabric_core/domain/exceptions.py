"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
CLI 层只需捕获这一基类即可给出统一的错误提示与退出码。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 对应的 HTTP 状态码（来自 Provider 时有意义），默认 400。
        extra: 其他补充字段（例如 session、pattern 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、读超时等。"""


class ApiError(BusinessError):
    """Provider 返回非 2xx/429 错误，或流中出现 error 事件。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，不做自动重试。"""


class ValidationError(BusinessError):
    """参数或配置校验失败（如缺少 API key）。"""


class NotFoundError(BusinessError):
    """Pattern、会话或模型查找失败。"""


class StorageError(BusinessError):
    """会话文件读写失败。追加/裁剪失败对当前交互是致命的。"""


class SessionLoadError(StorageError):
    """会话文件不存在或内容无法解析为条目列表。"""


class StreamDecodeError(BusinessError):
    """单个流式事件的负载无法解析。"""


class StreamProtocolError(StreamDecodeError):
    """事件顺序不合法，例如在 message_start 之前收到文本增量。"""
