"""Fabric Core 顶层包。

通过具名 pattern（system prompt 模板）把用户文本发送给远端 LLM，
包括配置加载、领域模型、Provider 适配、流式解码、会话持久化与命令行入口。
"""

from fabric_core.agents.session_driver import SessionDriver
from fabric_core.infrastructure.storage.yaml_store import SessionManager

__all__ = ["SessionDriver", "SessionManager"]
