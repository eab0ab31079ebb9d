"""系统提示词加载工具。

按 Agent 类型和语言(locale) 从 prompts/<locale> 目录读取 system prompt 文本，
用于构造 ChatMessage(role="system")。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(agent_type: str = "support", locale: str = "en") -> str:
    """根据 Agent 类型和语言加载系统提示词文本。

    目前 agent_type 仅支持 "support"（电商客服），对应 support_system.md。
    """

    fname = PROMPTS_DIR / locale / f"{agent_type}_system.md"
    return fname.read_text(encoding="utf-8").strip()
