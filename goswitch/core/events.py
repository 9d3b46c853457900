"""
事件通道模块。

安装进度通过 EventBus 广播。每个订阅者拥有一个有界队列，发布方从不
阻塞：队列满时丢弃最旧的事件，只保留最新进度。
"""

import queue
import threading
from typing import Any, Dict, List, Optional

from goswitch.utils.logger import get_logger

logger = get_logger()

DOWNLOAD_PROGRESS = "download_progress"
INSTALL_RESULT = "install_result"

DEFAULT_QUEUE_SIZE = 256


class Subscription:
    """单个订阅者的事件队列。"""

    def __init__(self, bus: "EventBus", event: str, maxsize: int):
        self.bus = bus
        self.event = event
        self.dropped = 0
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()

    def offer(self, payload: Dict[str, Any]) -> None:
        """
        非阻塞地投递事件，队列满时丢弃最旧的一条。

        参数:
            payload: 事件数据
        """
        with self._lock:
            while True:
                try:
                    self._queue.put_nowait(payload)
                    return
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                    except queue.Empty:
                        pass

    def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        取出下一条事件。

        参数:
            timeout: 等待秒数，None 表示一直等待

        返回:
            事件数据

        抛出:
            queue.Empty: 超时仍无事件
        """
        return self._queue.get(timeout=timeout)

    def drain(self) -> List[Dict[str, Any]]:
        """取出当前队列中的全部事件。"""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        self.bus.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventBus:
    """
    进程内事件总线。

    emit 可以在任意线程调用，订阅者按自己的节奏消费。
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        """
        初始化事件总线。

        参数:
            queue_size: 每个订阅队列的默认容量
        """
        self.queue_size = queue_size
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: str, maxsize: Optional[int] = None) -> Subscription:
        """
        订阅事件。

        参数:
            event: 事件名称
            maxsize: 队列容量，默认使用总线配置

        返回:
            订阅对象
        """
        subscription = Subscription(self, event, maxsize or self.queue_size)
        with self._lock:
            self._subscriptions.setdefault(event, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.event, [])
            if subscription in subscribers:
                subscribers.remove(subscription)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """
        广播事件，不等待任何订阅者。

        参数:
            event: 事件名称
            payload: 事件数据
        """
        with self._lock:
            subscribers = list(self._subscriptions.get(event, []))
        for subscription in subscribers:
            subscription.offer(dict(payload))
        logger.debug(f"事件 {event}: {payload}")
