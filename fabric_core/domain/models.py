"""统一的请求与结果数据模型。

本模块定义了在 Provider 与会话驱动层之间共享的标准数据结构：

- Pattern: 一个具名的 system prompt 模板。
- ChatMessage / ChatRequest: 发给底层 LLM Provider 的完整请求。
- ProviderReply: 非流式调用的统一结果。
- StreamResponse: 流式调用的统一结果（元数据 + 有序文本通道）。

所有 Provider 适配器（如 AnthropicClient）都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from fabric_core.providers.stream_decoder import StreamChannel


# Provider 可接受的消息角色（system prompt 单独放在请求顶层）
Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class Pattern:
    """具名 system prompt 模板，加载后只读。"""

    name: str
    system: str


@dataclass
class ChatMessage:
    """发往 Provider 的一条历史消息。"""

    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次完整的对话请求。

    会话驱动层把会话条目转换为 messages，Provider 适配层负责把本结构
    转换成各家 API 的 JSON 请求体。
    """

    model: str  # 厂商模型 ID，如 "claude-3-5-sonnet-20240620"
    system: str
    messages: List[ChatMessage]
    max_tokens: int = 4096
    temperature: float = 0.7


@dataclass
class ProviderReply:
    """非流式调用的结果。

    - meta: 响应中除正文以外的顶层字段（id、model、usage、stop_reason 等）。
    - body: 所有 text 类型内容块拼接后的正文。
    """

    meta: Dict[str, Any]
    body: str


@dataclass
class StreamResponse:
    """流式调用的结果。

    meta 在第一个文本块产出之前由 message_start 事件填充；
    channel 是流式文本的唯一通道，按事件到达顺序产出文本块，
    出错时以异常作为最后一项。
    """

    meta: Dict[str, Any]
    channel: "StreamChannel"
