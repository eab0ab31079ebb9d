"""Provider 与回退路由配置。

本模块把"按顺序尝试哪些模型"集中描述为数据：

- ProviderConfig: 某个 Provider 的名称与基础 URL。
- ModelRoute: 回退列表中的一项，即 (provider, 厂商模型 ID)。

增删回退模型只需修改配置中的 fallback_models，不需要改动网关代码。"""

from dataclasses import dataclass
from typing import Iterable, List, Mapping


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str


@dataclass(frozen=True)
class ModelRoute:
    """回退列表中的一个模型。"""

    provider: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.provider}/{self.model}"


# OpenRouter 配置（OpenAI 兼容的 chat/completions 接口）
OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openrouter": OPENROUTER_CONFIG,
}

DEFAULT_PROVIDER = "openrouter"


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def parse_route(entry: str) -> ModelRoute:
    """解析 "model" 或 "provider:model" 形式的配置项。

    模型 ID 本身可能带冒号（如 "deepseek/deepseek-r1:free"），
    因此只有冒号前缀是已注册的 Provider 名时才当作 provider 前缀。
    """

    entry = entry.strip()
    if not entry:
        raise ValueError("Empty model entry")
    prefix, sep, rest = entry.partition(":")
    if sep and rest and prefix.lower() in PROVIDER_REGISTRY:
        return ModelRoute(provider=prefix.lower(), model=rest)
    return ModelRoute(provider=DEFAULT_PROVIDER, model=entry)


def parse_routes(entries: Iterable[str]) -> List[ModelRoute]:
    return [parse_route(e) for e in entries]
