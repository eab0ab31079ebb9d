"""统一的对话与结果数据模型。

本模块定义了会话编排层与 Provider 适配层之间共享的标准数据结构：

- ChatMessage: 一条发给模型的对话消息（system/user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List


# LLM 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - meta: 附加元数据，不直接发给 Provider，主要用于日志。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    CompletionGateway 会为回退列表中的每个模型构造一个 ChatRequest，
    Provider 适配层负责把本结构转换成对应 API 的 JSON 请求体。
    """

    provider: str  # Provider 名，如 "openrouter"
    model: str  # 厂商模型 ID，如 "gpt-4o-mini"
    messages: List[ChatMessage]
    max_tokens: int = 2000
    temperature: Optional[float] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只使用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - provider: Provider 名（如 "openrouter"）。
    - model: 实际调用的模型 ID。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def first_content(self) -> str:
        """第一个候选回答的文本，没有候选时返回空串。"""

        if not self.choices:
            return ""
        return self.choices[0].message.content or ""
