"""系统提示词加载工具。

按语言(locale) 从 prompts 目录读取对应的 system prompt 文本，
用于构造 ChatMessage(role="system")。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(name: str = "system", locale: str = "en") -> str:
    """加载系统提示词；找不到对应语言时回退到默认文件。"""

    localized = PROMPTS_DIR / f"{name}.{locale}.md"
    if localized.exists():
        return localized.read_text(encoding="utf-8")
    return (PROMPTS_DIR / f"{name}.md").read_text(encoding="utf-8")
