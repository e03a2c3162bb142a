"""Server-Sent Events 行解析。

把 HTTP 响应的文本行（httpx.Response.iter_lines 的输出）组装为事件：

    event: content_block_delta
    data: {"type": "content_block_delta", ...}
    <空行>

规则按 WHATWG EventSource 规范：冒号开头的行是注释；多行 data 用换行拼接；
空行分发事件；流结束时未以空行结尾的半个事件被丢弃。
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional


@dataclass(frozen=True)
class ServerSentEvent:
    event: str
    data: str
    id: Optional[str] = None
    retry: Optional[int] = None


def iter_sse_events(lines: Iterable[str]) -> Iterator[ServerSentEvent]:
    event_type = ""
    data_lines: list[str] = []
    last_id: Optional[str] = None
    retry: Optional[int] = None

    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if data_lines:
                yield ServerSentEvent(
                    event=event_type or "message",
                    data="\n".join(data_lines),
                    id=last_id,
                    retry=retry,
                )
            event_type = ""
            data_lines = []
            retry = None
            continue
        if line.startswith(":"):
            continue

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            event_type = value
        elif name == "data":
            data_lines.append(value)
        elif name == "id":
            if "\0" not in value:
                last_id = value
        elif name == "retry":
            if value.isdigit():
                retry = int(value)
        # 其他字段忽略
