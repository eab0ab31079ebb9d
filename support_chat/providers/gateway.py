"""多模型回退网关。

CompletionGateway 按固定顺序逐个尝试回退列表中的模型：

- 每个模型只调用一次，不重试、不退避、不并发；
- 某个模型失败（网络错误、非 2xx、限流、空回复）只记录并切换到下一个；
- 第一个可用回复经清洗后立即返回，后续模型不再调用；
- 全部失败时抛出 AllProvidersFailedError，携带最后一次失败详情。
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from support_chat.domain.exceptions import AllProvidersFailedError, BusinessError, EmptyReplyError
from support_chat.domain.models import ChatMessage, ChatRequest
from support_chat.infrastructure.logging.logger import logger
from support_chat.prompts import load_system_prompt
from support_chat.providers.base import ProviderClient
from support_chat.providers.registry import ModelRoute, parse_routes

T = TypeVar("T")
R = TypeVar("R")

# 部分模型会在回复中残留的轮次分隔符
_STRAY_TOKENS = re.compile(r"<s>|</s>|\[/s\]")


@dataclass
class GatewayConfig:
    """网关配置，在构造时显式传入。"""

    routes: List[ModelRoute]
    system_prompt: str
    max_tokens: int = 2000
    temperature: Optional[float] = None

    @classmethod
    def from_settings(cls, cfg, system_prompt: Optional[str] = None) -> "GatewayConfig":
        return cls(
            routes=parse_routes(cfg.fallback_models),
            system_prompt=system_prompt if system_prompt is not None else load_system_prompt("support"),
            max_tokens=cfg.max_output_tokens,
            temperature=cfg.temperature,
        )


@dataclass
class AttemptFailure:
    """一次失败尝试的记录。"""

    candidate: str
    error: BusinessError

    def to_dict(self) -> Dict[str, str]:
        return {"route": self.candidate, "code": self.error.code, "message": self.error.message}


class FallbackExhausted(Exception):
    """first_success 的候选全部失败。"""

    def __init__(self, failures: List[AttemptFailure]):
        self.failures = failures
        super().__init__(f"{len(failures)} candidates failed")


def first_success(
    candidates: Sequence[T],
    attempt: Callable[[T], R],
    describe: Callable[[T], str] = str,
    on_failure: Optional[Callable[[AttemptFailure], None]] = None,
) -> Tuple[T, R]:
    """按顺序尝试 candidates，返回第一个没有抛出 BusinessError 的结果。

    全部失败时抛出 FallbackExhausted，按尝试顺序携带每次失败。
    """

    failures: List[AttemptFailure] = []
    for candidate in candidates:
        try:
            return candidate, attempt(candidate)
        except BusinessError as e:
            failure = AttemptFailure(candidate=describe(candidate), error=e)
            failures.append(failure)
            if on_failure is not None:
                on_failure(failure)
    raise FallbackExhausted(failures=failures)


def clean_reply(text: str) -> str:
    """去掉残留的分隔符并裁剪首尾空白。"""

    return _STRAY_TOKENS.sub("", text).strip()


class CompletionGateway:
    def __init__(self, config: GatewayConfig, clients: Mapping[str, ProviderClient]):
        missing = {r.provider for r in config.routes} - set(clients)
        if missing:
            raise ValueError(f"No client configured for providers: {sorted(missing)}")
        self._config = config
        self._clients = dict(clients)

    @property
    def config(self) -> GatewayConfig:
        return self._config

    def build_prompt(self, history: Sequence[ChatMessage], new_message: str) -> List[ChatMessage]:
        """system 指令 + 历史 + 新的用户消息。"""
        return [
            ChatMessage(role="system", content=self._config.system_prompt),
            *history,
            ChatMessage(role="user", content=new_message),
        ]

    def generate_reply(self, history: Sequence[ChatMessage], new_message: str) -> str:
        messages = self.build_prompt(history, new_message)
        try:
            route, reply = first_success(
                self._config.routes,
                lambda r: self._attempt(r, messages),
                describe=lambda r: r.label,
                on_failure=self._log_failure,
            )
        except FallbackExhausted as exhausted:
            attempts = [f.to_dict() for f in exhausted.failures]
            last = exhausted.failures[-1] if exhausted.failures else None
            logger.error(
                "All providers failed",
                extra={"extra": {"attempts": len(attempts), "last_route": last.candidate if last else None}},
            )
            raise AllProvidersFailedError(
                code="ALL_PROVIDERS_FAILED",
                message=f"All providers failed; last error: {last.error.code if last else 'NO_ROUTES'}",
                last_error=last.to_dict() if last else None,
                attempts=attempts,
            )
        logger.info("Provider reply accepted", extra={"extra": {"route": route.label}})
        return reply

    def _attempt(self, route: ModelRoute, messages: List[ChatMessage]) -> str:
        client = self._clients[route.provider]
        req = ChatRequest(
            provider=route.provider,
            model=route.model,
            messages=messages,
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
        )
        logger.info(
            "Calling provider",
            extra={"extra": {"route": route.label, "message_count": len(messages)}},
        )
        result = client.chat(req)
        reply = clean_reply(result.first_content)
        if not reply:
            raise EmptyReplyError(code="EMPTY_REPLY", message="Provider returned no usable content", model=route.model)
        return reply

    @staticmethod
    def _log_failure(failure: AttemptFailure) -> None:
        logger.warning(
            "Provider attempt failed",
            extra={"extra": failure.to_dict()},
        )
