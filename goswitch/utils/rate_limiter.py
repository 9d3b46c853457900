"""
速率限制器模块。

提供基于 Token Bucket 的请求频率控制，供目录获取和下载共用。
"""

import threading
import time
from typing import Callable, Optional


class RateLimiter:
    """
    速率限制器类，用于控制请求频率。

    按固定速率生成 token，每次请求消耗一个 token。
    requests_per_second 为 None 或不大于 0 时不做限制。
    """

    def __init__(
        self,
        requests_per_second: Optional[float] = None,
        max_tokens: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        初始化速率限制器。

        参数:
            requests_per_second: 每秒允许的请求数
            max_tokens: Token Bucket 的最大容量，默认为 requests_per_second
            clock: 时钟函数
            sleep: 等待函数
        """
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

        if requests_per_second is not None and requests_per_second > 0:
            self.requests_per_second: Optional[float] = float(requests_per_second)
            self.max_tokens = float(max_tokens or requests_per_second)
        else:
            self.requests_per_second = None
            self.max_tokens = 0.0
        self.tokens = self.max_tokens
        self.last_refill_time = clock()

    @property
    def unlimited(self) -> bool:
        return self.requests_per_second is None

    def acquire(self) -> None:
        """
        获取请求权限，必要时等待。

        此方法会阻塞直到可以发送请求。
        """
        if self.unlimited:
            return

        with self._lock:
            self._refill(self._clock())
            while self.tokens < 1.0:
                self._sleep((1.0 - self.tokens) / self.requests_per_second)
                self._refill(self._clock())
            self.tokens -= 1.0

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill_time)
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.requests_per_second)
        self.last_refill_time = now

    def reset(self) -> None:
        """重置速率限制器状态。"""
        with self._lock:
            self.tokens = self.max_tokens
            self.last_refill_time = self._clock()
