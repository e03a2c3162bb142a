"""Provider 与模型配置。

集中维护每个 Provider 的基础 URL 与可用模型目录，
以及各模型的默认生成参数。"""

from dataclasses import dataclass
from typing import Dict, Mapping

from fabric_core.domain.exceptions import NotFoundError


@dataclass
class ModelConfig:
    """单个模型的配置。"""

    name: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    api_version: str
    models: Dict[str, ModelConfig]


def _models(*entries: tuple) -> Dict[str, ModelConfig]:
    return {
        name: ModelConfig(name=name, max_tokens=max_tokens, default_temperature=0.7)
        for name, max_tokens in entries
    }


ANTHROPIC_CONFIG = ProviderConfig(
    name="anthropic",
    base_url="https://api.anthropic.com/v1",
    api_version="2023-06-01",
    models=_models(
        ("claude-3-5-sonnet-20240620", 8192),
        ("claude-3-opus-20240229", 4096),
        ("claude-3-sonnet-20240229", 4096),
        ("claude-3-haiku-20240307", 4096),
        ("claude-2.1", 4096),
    ),
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "anthropic": ANTHROPIC_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise NotFoundError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {name!r}")
