from __future__ import annotations


CRATE_NAME_PATTERN = "^[a-zA-Z0-9_-]+$"


class CrateLensError(Exception):
    """
    crate-lens 所有错误的基类。
    """

    recoverable: bool = False
    http_status: int | None = None

    @property
    def is_recoverable(self) -> bool:
        """
        是否属于可重试错误（网络/限流/服务暂不可用）；本项目自身不做重试。
        """
        return self.recoverable

    @property
    def status_code(self) -> int | None:
        """
        该错误对应的 HTTP 状态码（无对应时返回 None）。
        """
        return self.http_status

    def user_message(self) -> str:
        """
        面向终端用户的提示信息。
        """
        return str(self)


class ValidationError(CrateLensError):
    """
    输入校验失败（不可重试，直接返回给调用方）。
    """

    http_status = 400
    prefix = "Validation error"

    def __init__(self, message: str) -> None:
        super().__init__(f"{self.prefix}: {message}")
        self.message = message


class InvalidBatchInput(ValidationError):
    """
    批量输入的结构不符合三种受支持格式之一，或缺少必填字段。
    """

    prefix = "Invalid batch input"


class InvalidCrateName(ValidationError):
    """
    包名不符合 crates.io 的命名规则。
    """

    prefix = "Invalid crate name"

    def __init__(self, name: str, reason: str = CRATE_NAME_PATTERN) -> None:
        super().__init__(f"'{name}'. Crate names must match: {reason}")
        self.name = name
        self.reason = reason

    def user_message(self) -> str:
        return f"'{self.name}' 不是合法的包名，需满足：{self.reason}"


class NotFoundError(CrateLensError):
    """
    包或版本不存在（终态错误，不重试）。
    """

    http_status = 404


class CrateNotFound(NotFoundError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Crate '{name}' not found")
        self.name = name

    def user_message(self) -> str:
        return f"crates.io 上不存在包 '{self.name}'"


class VersionNotFound(NotFoundError):
    def __init__(self, name: str, version: str) -> None:
        super().__init__(f"Version '{version}' not found for crate '{name}'")
        self.name = name
        self.version = version

    def user_message(self) -> str:
        return f"未找到包 '{self.name}' 的版本 '{self.version}'"


class RateLimited(CrateLensError):
    recoverable = True
    http_status = 429

    def __init__(self) -> None:
        super().__init__("API rate limit exceeded. Please try again later")

    def user_message(self) -> str:
        return "已超出 API 限流，请稍后再试。"


class ServiceUnavailable(CrateLensError):
    recoverable = True
    http_status = 503

    def __init__(self, message: str) -> None:
        super().__init__(f"Service temporarily unavailable: {message}")

    def user_message(self) -> str:
        return "crates.io 服务暂时不可用，请稍后再试。"


class NetworkError(CrateLensError):
    recoverable = True

    def __init__(self, message: str) -> None:
        super().__init__(f"Network error: {message}")

    def user_message(self) -> str:
        return "网络连接失败，请检查网络。"


class RequestTimeout(CrateLensError):
    recoverable = True

    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Request timeout after {timeout_s:g} seconds")
        self.timeout_s = timeout_s


class ServerError(CrateLensError):
    """
    上游返回了非预期的状态码。
    """

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"Server error: {status} - {message}")
        self.status = status
        self.http_status = status


class InvalidResponse(CrateLensError):
    """
    上游响应无法解析为预期的 JSON 结构。
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"JSON parsing failed: {message}")


def error_from_status(status: int, reason: str | None = None) -> CrateLensError:
    """
    将上游的非 200/404 状态码映射为错误类型。
    """
    if status == 429:
        return RateLimited()
    if 500 <= status <= 599:
        return ServiceUnavailable(f"Server error: {status}")
    return ServerError(status, reason or "Unknown error")
