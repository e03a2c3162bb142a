"""Provider 抽象接口。

会话驱动层不直接依赖具体厂商的 HTTP 协议，而是依赖这里的两个协议：

- Provider: 模型目录（list_models）与按模型构造客户端（get_client）。
- ProviderClient: 针对某个模型发起一次对话调用（非流式或流式）。

厂商相关的请求/响应映射全部留在具体实现（如 AnthropicClient）内部。
"""

from typing import List, Protocol

from fabric_core.domain.models import Pattern, ProviderReply, StreamResponse
from fabric_core.domain.session import ChatSession


class ProviderClient(Protocol):
    """绑定到单个模型的 LLM 客户端。

    会话中的全部条目会作为历史消息随请求发出。
    """

    name: str
    model: str

    def send_message(self, pattern: Pattern, session: ChatSession) -> ProviderReply:
        ...

    def stream_message(self, pattern: Pattern, session: ChatSession) -> StreamResponse:
        """发起流式调用，返回时 meta 已就绪，文本块从 channel 读取。"""

        ...


class Provider(Protocol):
    name: str

    def list_models(self) -> List[str]:
        ...

    def get_client(self, model: str) -> ProviderClient:
        ...
