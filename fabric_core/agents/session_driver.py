"""会话驱动：把一次用户交互串联到会话与 Provider 客户端上。

每次交互先记录用户输入，再调用 Provider，最后记录模型回复。
Provider 调用失败时用户输入仍保留在会话中，不做回滚。
"""

from typing import Any, Dict, List, Optional, TextIO

from fabric_core.domain.models import Pattern, ProviderReply
from fabric_core.domain.session import ChatEntry, ChatSession, QueryEntry, ReplyEntry
from fabric_core.infrastructure.logging.logger import logger
from fabric_core.providers.base import ProviderClient


class SessionDriver:
    def __init__(self, session: ChatSession, client: ProviderClient):
        self.session = session
        self.client = client

    @property
    def is_dummy(self) -> bool:
        return self.session.is_dummy

    @property
    def messages(self) -> List[ChatEntry]:
        return self.session.messages

    def send_message(self, pattern: Pattern, text: str, out: TextIO) -> ProviderReply:
        """非流式：一次性写出完整回复并记录。"""

        self.session.append(QueryEntry(content=text, pattern=pattern.name))
        reply = self.client.send_message(pattern, self.session)
        logger.info("Message metadata", extra={"extra": {"meta": reply.meta}})

        out.write(f"{reply.body}\n")
        out.flush()

        self.session.append(ReplyEntry(content=reply.body))
        return reply

    def stream_message(self, pattern: Pattern, text: str, out: TextIO) -> Dict[str, Any]:
        """流式：每个文本块立即写出并 flush，结束后把完整回复记录为一条条目。

        通道中途出错时停止读取并重新抛出错误，已写出的部分输出保持原样，
        不记录回复条目。临时会话不累积回复。
        """

        self.session.append(QueryEntry(content=text, pattern=pattern.name))
        response = self.client.stream_message(pattern, self.session)
        logger.info("Message metadata", extra={"extra": {"meta": response.meta}})

        content: Optional[List[str]] = None if self.session.is_dummy else []
        with response.channel as channel:
            for chunk in channel:
                out.write(chunk)
                out.flush()
                if content is not None:
                    content.append(chunk)

        if content:
            self.session.append(ReplyEntry(content="".join(content)))
        return response.meta
