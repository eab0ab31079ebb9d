"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与回退路由配置 (registry)。
- 提供各厂商的具体实现 (openrouter_client)。
- 按顺序回退的网关 (gateway)。
"""

from typing import Dict, Optional

from support_chat.config.settings import settings
from support_chat.providers.base import ProviderClient
from support_chat.providers.gateway import CompletionGateway, GatewayConfig
from support_chat.providers.openrouter_client import OpenRouterClient


def create_provider(name: str, cfg=None) -> ProviderClient:
    """根据名称创建 Provider 实例。"""

    provider_name = name.lower()
    if provider_name == "openrouter":
        return OpenRouterClient(cfg or settings)
    raise KeyError(f"Unknown provider: {name!r}")


def create_gateway(cfg=None, system_prompt: Optional[str] = None) -> CompletionGateway:
    """按配置构造网关：回退列表中出现的每个 Provider 各创建一个客户端。"""

    cfg = cfg or settings
    config = GatewayConfig.from_settings(cfg, system_prompt=system_prompt)
    clients: Dict[str, ProviderClient] = {}
    for route in config.routes:
        if route.provider not in clients:
            clients[route.provider] = create_provider(route.provider, cfg)
    return CompletionGateway(config, clients)
