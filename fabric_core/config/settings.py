"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。

库代码不读取全局配置：CLI 调用 load_settings() 得到 Settings 实例后，
再把需要的值通过构造函数逐层传入。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "fabric"


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("FABRIC_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        DEFAULT_CONFIG_DIR / "config.yaml",
        Path.cwd() / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(default="anthropic", description="默认使用的 Provider 名称")
    default_model: str = Field(
        default="claude-3-5-sonnet-20240620",
        validation_alias=AliasChoices("fabric_model", "default_model"),
        description="默认模型，可用 FABRIC_MODEL 覆盖",
    )
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com/v1",
        description="Anthropic API 基础URL",
    )
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version 请求头")

    # ---- 生成参数 ----
    max_tokens: int = Field(default=4096, ge=1, description="单次回复最大 token 数")
    temperature: float = Field(default=0.7, ge=0.0, le=1.0, description="生成温度")
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 连接/读取超时时间（秒）")
    stream_buffer_size: int = Field(default=8, ge=1, description="流式通道容量")
    max_context_messages: int = Field(
        default=0,
        ge=0,
        description="发送给 Provider 的最大历史消息数，0 表示不限制",
    )

    # ---- 目录 ----
    config_dir: str = Field(default=str(DEFAULT_CONFIG_DIR), description="配置根目录")
    sessions_dir: Optional[str] = Field(default=None, description="会话目录，默认 <config_dir>/sessions")
    patterns_dir: Optional[str] = Field(default=None, description="Pattern 目录，默认 <config_dir>/patterns")
    extra_patterns: Optional[str] = Field(default=None, description="以分号分隔的额外 Pattern 目录")

    # ---- 日志 ----
    log_dir: Optional[str] = Field(default=None, description="日志目录，默认 <config_dir>/logs")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=(str(DEFAULT_CONFIG_DIR / ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("anthropic_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v!r}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    @property
    def sessions_path(self) -> Path:
        return Path(self.sessions_dir or Path(self.config_dir) / "sessions").expanduser()

    @property
    def patterns_path(self) -> Path:
        return Path(self.patterns_dir or Path(self.config_dir) / "patterns").expanduser()

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir or Path(self.config_dir) / "logs").expanduser()

    @property
    def extra_pattern_dirs(self) -> List[Path]:
        """展开额外 Pattern 目录（支持 ~ 与 $VAR），只保留存在的目录。"""

        dirs: List[Path] = []
        for raw in (self.extra_patterns or "").split(";"):
            raw = raw.strip()
            if not raw:
                continue
            path = Path(os.path.expandvars(os.path.expanduser(raw)))
            if path.is_dir():
                dirs.append(path)
        return dirs


def load_settings(**overrides: Any) -> Settings:
    """加载配置，overrides 优先级最高（通常来自命令行参数）。"""

    clean = {k: v for k, v in overrides.items() if v is not None}
    return Settings(**clean)
