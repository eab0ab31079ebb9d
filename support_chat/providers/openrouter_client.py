"""OpenRouter Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI 兼容的 chat/completions 请求：
   - URL: {base_url}/chat/completions
   - 认证: Authorization: Bearer <api_key>
   - 请求体: {model, messages: [{role, content}], max_tokens[, temperature]}
3. 调用 HTTP 接口并把网络/API 异常包装为统一的业务异常。
4. 将响应 JSON 解析为统一的 ChatResult。

单次调用只负责一个模型，回退顺序由 CompletionGateway 控制。
"""

from typing import Any, Dict

import httpx

from support_chat.config.settings import settings
from support_chat.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from support_chat.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
)
from support_chat.providers.registry import OPENROUTER_CONFIG

# 错误详情只截取响应体前若干字符，避免日志与响应过大
_MAX_ERROR_BODY = 500


class OpenRouterClient:
    """OpenRouter Provider 客户端实现。"""

    name = "openrouter"

    def __init__(self, cfg=settings):
        # cfg 里包含 base_url、api_key、超时等配置
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 校验 API key。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 使用统一的解析函数构造 ChatResult。
        """

        api_key = getattr(self._settings, "openrouter_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，网关会把它当作本模型失败
            raise ValidationError(code="MISSING_API_KEY", message="OPENROUTER_API_KEY not set")
        payload = self._build_payload(req)
        base = getattr(self._settings, "openrouter_base_url", None) or OPENROUTER_CONFIG.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base.rstrip('/')}/chat/completions",
                    json=payload,
                    headers=self._build_headers(api_key),
                )
        except httpx.InvalidURL as e:
            # base_url 配置错误
            raise ValidationError(code="INVALID_BASE_URL", message=str(e), model=req.model)
        except httpx.HTTPError as e:
            # 网络错误：DNS 失败、连接超时、协议不支持等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), model=req.model)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="OpenRouter rate limit", model=req.model)
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=resp.text[:_MAX_ERROR_BODY],
                http_status=resp.status_code,
                model=req.model,
            )
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(code="INVALID_RESPONSE", message=resp.text[:_MAX_ERROR_BODY], model=req.model)
        if not isinstance(data, dict):
            raise ApiError(code="INVALID_RESPONSE", message="Response body is not an object", model=req.model)
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        # OpenRouter 的可选归属头
        site_url = getattr(self._settings, "site_url", None)
        if site_url:
            headers["HTTP-Referer"] = site_url
        app_title = getattr(self._settings, "app_title", None)
        if app_title:
            headers["X-Title"] = app_title
        return headers

    @staticmethod
    def _build_payload(req: ChatRequest) -> dict:
        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "max_tokens": req.max_tokens,
        }
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            if not isinstance(ch, dict):
                continue
            msg = ch.get("message") or {}
            content = msg.get("content") if isinstance(msg, dict) else None
            choices.append(
                ChatChoice(
                    index=i,
                    message=ChatMessage(role="assistant", content=content if isinstance(content, str) else ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)
