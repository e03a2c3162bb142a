"""会话条目与会话抽象。

会话文件是一个有序的带标签记录列表：

    - role: user
      pattern: summarize
      content: ...
    - role: assistant
      content: ...

role 无法识别的记录反序列化为 UnknownEntry，而不是让整个文件解析失败，
以兼容新版本写出的会话文件。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union

from .exceptions import SessionLoadError
from .models import ChatMessage

USER_ROLES = ("user", "query")
ASSISTANT_ROLES = ("assistant", "reply")


@dataclass(frozen=True)
class QueryEntry:
    """用户输入，附带使用的 pattern 名称。"""

    content: str
    pattern: Optional[str] = None


@dataclass(frozen=True)
class ReplyEntry:
    """模型回复。"""

    content: str


@dataclass(frozen=True)
class UnknownEntry:
    """role 无法识别的记录，仅保留在内存中。"""

    role: Any = None


ChatEntry = Union[QueryEntry, ReplyEntry, UnknownEntry]


def entry_from_dict(data: Any) -> ChatEntry:
    """把文件中的一条记录解析为 ChatEntry。

    记录必须是映射；已知 role 的记录必须带字符串 content，
    否则视为整个文件无法解析。
    """

    if not isinstance(data, dict):
        raise SessionLoadError(code="SESSION_PARSE_ERROR", message=f"entry is not a mapping: {data!r}")
    role = data.get("role")
    if role not in USER_ROLES and role not in ASSISTANT_ROLES:
        return UnknownEntry(role=role)
    content = data.get("content")
    if not isinstance(content, str):
        raise SessionLoadError(code="SESSION_PARSE_ERROR", message=f"{role} entry without string content")
    if role in USER_ROLES:
        pattern = data.get("pattern")
        return QueryEntry(content=content, pattern=None if pattern is None else str(pattern))
    return ReplyEntry(content=content)


def entry_to_dict(entry: ChatEntry) -> Optional[Dict[str, Any]]:
    """序列化单条记录；UnknownEntry 返回 None（写回时丢弃）。"""

    if isinstance(entry, QueryEntry):
        payload: Dict[str, Any] = {"role": "user"}
        if entry.pattern is not None:
            payload["pattern"] = entry.pattern
        payload["content"] = entry.content
        return payload
    if isinstance(entry, ReplyEntry):
        return {"role": "assistant", "content": entry.content}
    return None


def entries_from_list(data: Any) -> List[ChatEntry]:
    """解析整个文档。空文档视为空会话。"""

    if data is None:
        return []
    if not isinstance(data, list):
        raise SessionLoadError(code="SESSION_PARSE_ERROR", message="session document is not a sequence")
    return [entry_from_dict(item) for item in data]


def to_chat_messages(entries: List[ChatEntry], limit: int = 0) -> List[ChatMessage]:
    """把会话条目转换为发给 Provider 的历史消息。

    相邻的同角色条目会合并（例如上一次调用失败后只留下了用户输入），
    保证发出的消息角色交替出现。limit > 0 时只保留最近的 limit 条。
    """

    messages: List[ChatMessage] = []
    for entry in entries:
        if isinstance(entry, QueryEntry):
            role = "user"
        elif isinstance(entry, ReplyEntry):
            role = "assistant"
        else:
            continue
        if not entry.content:
            continue
        if messages and messages[-1].role == role:
            messages[-1].content = f"{messages[-1].content}\n\n{entry.content}"
        else:
            messages.append(ChatMessage(role=role, content=entry.content))
    if limit > 0 and len(messages) > limit:
        messages = messages[-limit:]
        # 历史必须以用户消息开头
        while messages and messages[0].role != "user":
            messages.pop(0)
    return messages


class ChatSession(Protocol):
    """会话抽象：持久化会话（Stored）与临时会话（Dummy）共用的接口。"""

    name: Optional[str]

    @property
    def is_dummy(self) -> bool:
        ...

    @property
    def messages(self) -> List[ChatEntry]:
        ...

    def append(self, entry: ChatEntry) -> None:
        ...

    def prune(self, limit: int) -> List[ChatEntry]:
        ...

    def clear(self) -> None:
        ...

    def close(self) -> None:
        ...
