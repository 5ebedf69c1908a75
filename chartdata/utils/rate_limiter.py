"""速率限制器"""

import threading
import time
from collections import defaultdict
from typing import Dict, List
from chartdata.core.config import settings
from chartdata.utils.logger import log


class RateLimiter:
    """滑动窗口速率限制器"""

    def __init__(self, max_requests: int = 100, time_window: int = 60):
        """
        初始化速率限制器

        Args:
            max_requests: 时间窗口内最大请求数
            time_window: 时间窗口（秒）
        """
        self.max_requests = max_requests
        self.time_window = time_window
        self.requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float):
        self.requests[key] = [
            ts for ts in self.requests[key]
            if now - ts < self.time_window
        ]

    def is_allowed(self, key: str) -> bool:
        """
        记录请求并检查是否允许

        Args:
            key: 限流键（如用户ID、IP）

        Returns:
            窗口已满时返回 False
        """
        now = time.time()
        with self._lock:
            self._prune(key, now)
            if len(self.requests[key]) >= self.max_requests:
                log.warning(f"超过速率限制: {key}")
                return False
            self.requests[key].append(now)
            return True

    def get_remaining(self, key: str) -> int:
        """当前窗口内剩余请求数"""
        with self._lock:
            self._prune(key, time.time())
            return max(0, self.max_requests - len(self.requests[key]))

    def reset(self):
        """清空所有请求记录"""
        with self._lock:
            self.requests.clear()


# 全局速率限制器
_rate_limiter = RateLimiter(
    max_requests=settings.rate_limit_requests,
    time_window=settings.rate_limit_window_seconds
)


def get_rate_limiter() -> RateLimiter:
    """获取全局速率限制器"""
    return _rate_limiter
