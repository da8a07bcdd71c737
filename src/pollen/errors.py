"""错误类型."""


class PollenError(Exception):
    """Pollen 错误基类."""


class ParseError(PollenError):
    """订阅源文档结构无效."""


class NetworkError(PollenError):
    """网络请求失败."""


class FetchTimeoutError(NetworkError):
    """网络请求超时."""


class AuthError(PollenError):
    """远程账户认证失败."""


class NotSupportedError(PollenError):
    """当前后端不支持该操作."""


class RefreshFailedError(PollenError):
    """本次刷新中所有订阅源均失败."""

    def __init__(self, msg: str, cause: BaseException | None = None) -> None:
        super().__init__(msg)
        self.cause = cause
