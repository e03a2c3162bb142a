"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider / ProviderClient 抽象接口 (base)。
- 维护 Provider 与模型目录 (registry)。
- SSE 解析 (sse) 与流式解码 (stream_decoder)。
- 提供各厂商的具体实现 (如 anthropic_client)。
"""

from typing import Optional

from fabric_core.providers.anthropic_client import AnthropicProvider
from fabric_core.providers.base import Provider, ProviderClient
from fabric_core.providers.registry import get_provider_config


def create_provider(settings, name: Optional[str] = None) -> Provider:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", None) or "anthropic").lower()
    cfg = get_provider_config(provider_name)
    if cfg.name == "anthropic":
        return AnthropicProvider(settings)
    raise NotImplementedError(cfg.name)


__all__ = ["Provider", "ProviderClient", "create_provider"]
