"""Anthropic Provider 适配器。

本模块负责：

1. 把 Pattern 与会话历史转换为 Messages API 请求（/v1/messages）。
2. 调用 HTTP 接口并处理网络/API 异常。
3. 非流式：从 content 数组中提取 text 类型内容块，其他类型记录日志后跳过。
4. 流式：在后台线程打开 SSE 连接，交给 StreamDecoder 解码。
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List

import httpx

from fabric_core.domain.exceptions import ApiError, NetworkError, NotFoundError, RateLimitError, ValidationError
from fabric_core.domain.models import ChatRequest, Pattern, ProviderReply, StreamResponse
from fabric_core.domain.session import ChatSession, to_chat_messages
from fabric_core.infrastructure.logging.logger import logger
from fabric_core.providers.registry import ANTHROPIC_CONFIG, ModelConfig
from fabric_core.providers.sse import ServerSentEvent, iter_sse_events
from fabric_core.providers.stream_decoder import STREAM_BUFFER_SIZE, start_stream


class AnthropicProvider:
    """模型目录 + 客户端工厂。"""

    name = "anthropic"

    def __init__(self, settings):
        self._settings = settings

    def list_models(self) -> List[str]:
        return list(ANTHROPIC_CONFIG.models)

    def get_client(self, model: str) -> "AnthropicClient":
        if not model:
            raise NotFoundError(code="UNKNOWN_MODEL", message="model name is empty")
        if model not in ANTHROPIC_CONFIG.models:
            logger.warning("Model not in catalog, using provider defaults", extra={"extra": {"model": model}})
        return AnthropicClient(self._settings, model)


class AnthropicClient:
    """绑定到单个模型的 Anthropic 客户端。"""

    name = "anthropic"

    def __init__(self, settings, model: str):
        # Settings 里包含 api_key、base_url、超时与生成参数
        self._settings = settings
        self.model = model
        self._model_cfg = ANTHROPIC_CONFIG.models.get(
            model, ModelConfig(name=model, max_tokens=4096, default_temperature=0.7)
        )

    # ---- 非流式 ----

    def send_message(self, pattern: Pattern, session: ChatSession) -> ProviderReply:
        self._require_api_key()
        req = self._build_request(pattern, session)
        payload = self._build_payload(req, stream=False)
        logger.info(
            "Sending message",
            extra={"extra": {"pattern": pattern.name, "model": self.model, "message_count": len(req.messages)}},
        )
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(self._url(), json=payload, headers=self._headers())
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        logger.info("Response received", extra={"extra": {"status": resp.status_code}})
        self._check_status(resp)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="API_DECODE_ERROR", message=f"invalid JSON response: {e}", http_status=resp.status_code)
        return self._parse_response(data)

    # ---- 流式 ----

    def stream_message(self, pattern: Pattern, session: ChatSession) -> StreamResponse:
        """发起流式调用；连接与解码都在后台线程中进行。"""

        self._require_api_key()
        req = self._build_request(pattern, session)
        payload = self._build_payload(req, stream=True)
        logger.info(
            "Starting stream",
            extra={"extra": {"pattern": pattern.name, "model": self.model, "message_count": len(req.messages)}},
        )
        buffer_size = getattr(self._settings, "stream_buffer_size", None) or STREAM_BUFFER_SIZE
        return start_stream(lambda: self._open_events(payload), buffer_size=buffer_size)

    @contextmanager
    def _open_events(self, payload: Dict[str, Any]) -> Iterator[Iterable[ServerSentEvent]]:
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream("POST", self._url(), json=payload, headers=self._headers()) as resp:
                    self._check_status(resp, streaming=True)
                    yield iter_sse_events(resp.iter_lines())
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    # ---- 辅助方法 ----

    def _require_api_key(self) -> None:
        if not getattr(self._settings, "anthropic_api_key", None):
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="ANTHROPIC_API_KEY not set")

    def _url(self) -> str:
        base = getattr(self._settings, "anthropic_base_url", None) or ANTHROPIC_CONFIG.base_url
        return f"{base.rstrip('/')}/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._settings.anthropic_api_key,
            "anthropic-version": getattr(self._settings, "anthropic_version", None) or ANTHROPIC_CONFIG.api_version,
            "Content-Type": "application/json",
        }

    def _build_request(self, pattern: Pattern, session: ChatSession) -> ChatRequest:
        limit = getattr(self._settings, "max_context_messages", 0) or 0
        temperature = getattr(self._settings, "temperature", None)
        return ChatRequest(
            model=self.model,
            system=pattern.system,
            messages=to_chat_messages(session.messages, limit=limit),
            max_tokens=getattr(self._settings, "max_tokens", None) or self._model_cfg.max_tokens,
            temperature=self._model_cfg.default_temperature if temperature is None else temperature,
        )

    def _build_payload(self, req: ChatRequest, stream: bool) -> dict:
        """将 ChatRequest 转成 Messages API 所需的请求 JSON。"""

        return {
            "stream": stream,
            "model": req.model,
            "max_tokens": req.max_tokens,
            "temperature": req.temperature,
            "system": req.system,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
        }

    @staticmethod
    def _check_status(resp, streaming: bool = False) -> None:
        if resp.status_code < 400:
            return
        if streaming:
            # 流式响应需要先读完才能访问 text
            resp.read()
        if resp.status_code == 429:
            # 限流不做自动重试，交给调用方决定
            raise RateLimitError(code="RATE_LIMIT", message="Anthropic rate limit", http_status=429)
        raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)

    @staticmethod
    def _parse_response(data: Any) -> ProviderReply:
        """把原始响应 JSON 解析为 ProviderReply，只保留 text 内容块。"""

        if not isinstance(data, dict) or not isinstance(data.get("content"), list):
            raise ApiError(code="API_DECODE_ERROR", message="Response content missing")
        parts: List[str] = []
        for block in data["content"]:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                parts.append(block["text"])
            else:
                logger.warning("Unexpected content block", extra={"extra": {"block": block}})
        meta = {k: v for k, v in data.items() if k != "content"}
        logger.info("Message metadata", extra={"extra": {"meta": meta}})
        return ProviderReply(meta=meta, body="".join(parts))
