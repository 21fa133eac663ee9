"""
服务异常体系

    CryptoServiceError
    ├── RemoteError
    │   ├── RemoteRateLimited   （429 且重试耗尽）
    │   └── RemoteUnavailable   （其它数据源故障）
    └── StoreUnavailable        （本地行情库读取失败）

缓存故障不在此列：缓存层内部吞掉并降级，从不向外抛出。
"""

from typing import Any, Dict, Optional


class CryptoServiceError(Exception):
    """服务内所有自定义异常的基类"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为 API 错误响应字典"""
        return {"error": self.code, "message": self.message, "details": self.details}


class RemoteError(CryptoServiceError):
    """外部行情数据源错误"""


class RemoteRateLimited(RemoteError):
    """数据源返回 429，且重试次数已耗尽"""

    def __init__(self, message: str, attempts: int = 0, **kwargs):
        self.attempts = attempts
        super().__init__(message, **kwargs)


class RemoteUnavailable(RemoteError):
    """数据源不可用（网络错误、非 429 的 HTTP 错误、响应格式错误）"""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class StoreUnavailable(CryptoServiceError):
    """本地行情库查询失败"""
