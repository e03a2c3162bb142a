"""流式响应解码器。

后台线程独占 HTTP 连接，把 Provider 的 SSE 事件转换为与厂商无关的文本块，
通过有界通道（StreamChannel）按事件到达顺序交给消费者：

    message_start        -> 解析信封，填充 meta（必须早于任何文本块）
    content_block_delta  -> 产出一个文本块；负载无法解析时产出 StreamDecodeError 并关闭
    content_block_stop   -> 产出块分隔符
    message_stop         -> 关闭事件源
    error                -> 产出 ApiError 并关闭
    content_block_start / message_delta / ping / 其他 -> 仅记录日志

通道容量有限，消费者处理慢时解码线程会阻塞等待，不会丢数据；
消费者关闭通道是唯一的取消信号。不做任何重试。
"""

import json
import queue
import threading
from typing import Any, Callable, ContextManager, Dict, Iterable, Iterator, Optional, Union

from fabric_core.domain.exceptions import ApiError, BusinessError, StreamDecodeError, StreamProtocolError
from fabric_core.domain.models import StreamResponse
from fabric_core.infrastructure.logging.logger import logger
from fabric_core.providers.sse import ServerSentEvent

STREAM_BUFFER_SIZE = 8
BLOCK_SEPARATOR = "\n\n"

StreamItem = Union[str, BusinessError]
EventSourceFactory = Callable[[], ContextManager[Iterable[ServerSentEvent]]]

_END = object()


class StreamChannel:
    """有界、有序的单生产者/单消费者通道。

    生产者调用 put/finish；消费者调用 recv 或直接迭代。
    迭代时遇到错误项会抛出该异常，之后通道视为结束。
    """

    def __init__(self, maxsize: int = STREAM_BUFFER_SIZE, poll_interval: float = 0.1):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._poll_interval = poll_interval
        self._done = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    # ---- 生产者侧 ----

    def put(self, item: StreamItem) -> bool:
        """阻塞直到放入成功；消费者已关闭通道时返回 False。"""

        while not self._closed.is_set():
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def finish(self) -> None:
        while not self._closed.is_set():
            try:
                self._queue.put(_END, timeout=self._poll_interval)
                return
            except queue.Full:
                continue

    # ---- 消费者侧 ----

    def recv(self, timeout: Optional[float] = None) -> Optional[StreamItem]:
        """取下一项：文本块或错误；通道结束后返回 None。"""

        if self._done:
            return None
        item = self._queue.get(timeout=timeout)
        if item is _END:
            self._done = True
            return None
        if isinstance(item, BusinessError):
            self._done = True
        return item

    def close(self) -> None:
        """消费者放弃读取：通知生产者停止并清空缓冲。"""

        self._closed.set()
        self._done = True
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self.recv()
            if item is None:
                return
            if isinstance(item, BusinessError):
                raise item
            yield item

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class StreamDecoder:
    """Anthropic Messages 流式协议的状态机。"""

    def __init__(self, channel: StreamChannel):
        self.meta: Dict[str, Any] = {}
        self._channel = channel
        self._message_started = False
        self._meta_ready = threading.Event()

    def wait_for_meta(self, timeout: Optional[float] = None) -> bool:
        """等待 message_start 处理完毕（或流提前结束）。"""

        return self._meta_ready.wait(timeout)

    def run(self, open_events: EventSourceFactory) -> None:
        """后台线程入口：打开事件源并逐个处理，直到关闭、出错或耗尽。"""

        try:
            with open_events() as events:
                logger.info("Connection open")
                for event in events:
                    if not self.handle(event):
                        break
        except BusinessError as e:
            logger.warning("Stream failed", extra={"extra": {"code": e.code, "error": e.message}})
            self._channel.put(e)
        except Exception as e:  # noqa: BLE001 - 后台线程的异常必须交给消费者
            logger.exception("Unexpected stream failure")
            self._channel.put(StreamDecodeError(code="STREAM_ERROR", message=str(e)))
        finally:
            self._meta_ready.set()
            self._channel.finish()
            logger.info("Finished streaming")

    def handle(self, event: ServerSentEvent) -> bool:
        """处理单个事件，返回 False 表示应关闭事件源。"""

        kind = event.event
        if kind == "message":
            # 没有 event 行时退回到负载里的 type 字段
            kind = self._peek_type(event.data) or kind

        if kind == "message_start":
            return self._on_message_start(event)
        if kind == "content_block_delta":
            return self._on_block_delta(event)
        if kind == "content_block_stop":
            if not self._message_started:
                return self._fail(self._out_of_order(kind))
            return self._channel.put(BLOCK_SEPARATOR)
        if kind == "message_stop":
            logger.debug("message_stop")
            return False
        if kind == "error":
            return self._on_error(event)
        if kind == "message_delta":
            logger.debug("message_delta", extra={"extra": {"data": event.data}})
            return True
        if kind in ("content_block_start", "ping"):
            return True
        logger.warning("Unhandled event type", extra={"extra": {"event": kind, "data": event.data}})
        return True

    # ---- 事件处理 ----

    def _on_message_start(self, event: ServerSentEvent) -> bool:
        logger.debug("message_start", extra={"extra": {"data": event.data}})
        data = self._parse(event, "SSE content start")
        if data is None:
            return False
        message = data.get("message")
        if not isinstance(message, dict):
            return self._fail(StreamDecodeError(code="SSE_DECODE_ERROR", message="message_start without message envelope"))
        if self._message_started:
            logger.warning("Duplicate message_start ignored")
            return True
        self.meta.update({k: v for k, v in message.items() if k != "content"})
        self._message_started = True
        self._meta_ready.set()
        for block in message.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                if not self._channel.put(block["text"]):
                    return False
        return True

    def _on_block_delta(self, event: ServerSentEvent) -> bool:
        if not self._message_started:
            return self._fail(self._out_of_order("content_block_delta"))
        data = self._parse(event, "SSE decode data")
        if data is None:
            return False
        delta = data.get("delta")
        if not isinstance(delta, dict):
            return self._fail(StreamDecodeError(code="SSE_DECODE_ERROR", message="content_block_delta without delta"))
        if delta.get("type", "text_delta") != "text_delta":
            logger.debug("Skipping non-text delta", extra={"extra": {"delta_type": delta.get("type")}})
            return True
        text = delta.get("text")
        if not isinstance(text, str):
            return self._fail(StreamDecodeError(code="SSE_DECODE_ERROR", message="text_delta without text"))
        return self._channel.put(text)

    def _on_error(self, event: ServerSentEvent) -> bool:
        data = self._parse(event, "SSE error event")
        if data is None:
            return False
        err = data.get("error") if isinstance(data.get("error"), dict) else {}
        return self._fail(
            ApiError(
                code=str(err.get("type") or "STREAM_ERROR"),
                message=str(err.get("message") or event.data),
            )
        )

    # ---- 辅助方法 ----

    def _parse(self, event: ServerSentEvent, context: str) -> Optional[Dict[str, Any]]:
        """解析 JSON 负载；失败时把 StreamDecodeError 放入通道并返回 None。"""

        try:
            data = json.loads(event.data)
        except json.JSONDecodeError as e:
            self._fail(StreamDecodeError(code="SSE_DECODE_ERROR", message=f"{context}: {e}", event=event.event))
            return None
        if not isinstance(data, dict):
            self._fail(StreamDecodeError(code="SSE_DECODE_ERROR", message=f"{context}: payload is not an object", event=event.event))
            return None
        return data

    def _fail(self, error: BusinessError) -> bool:
        logger.warning("Stream decode failed", extra={"extra": {"code": error.code, "error": error.message}})
        self._channel.put(error)
        return False

    @staticmethod
    def _out_of_order(kind: str) -> StreamProtocolError:
        return StreamProtocolError(code="SSE_PROTOCOL_ERROR", message=f"{kind} received before message_start")

    @staticmethod
    def _peek_type(data: str) -> Optional[str]:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            return None
        if isinstance(payload, dict) and isinstance(payload.get("type"), str):
            return payload["type"]
        return None


def start_stream(open_events: EventSourceFactory, buffer_size: int = STREAM_BUFFER_SIZE) -> StreamResponse:
    """启动后台解码线程，等 meta 就绪后返回 StreamResponse。"""

    channel = StreamChannel(maxsize=buffer_size)
    decoder = StreamDecoder(channel)
    thread = threading.Thread(target=decoder.run, args=(open_events,), name="sse-consumer", daemon=True)
    thread.start()
    decoder.wait_for_meta()
    return StreamResponse(meta=decoder.meta, channel=channel)
