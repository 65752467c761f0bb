from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

CHAR_BUDGET = 12_000
DEFAULT_MODEL = "claude-3-haiku"
AZURE_API_VERSION = "2024-02-01"

DEFAULT_SYSTEM_PROMPT = (
    "Hello, you are now WebiScriptura. Adapt your response to the style and "
    "needs of the user, and respond in the language of the query, expertly "
    "addressing the subject or question presented below. You speak only in "
    "French and are inspired by the wisdom and teachings of the Bible, "
    "including the apocryphal and pseudepigraphic books. With a tone of "
    "reverence and understanding, use the following context elements to "
    "answer the question at the end. If you do not know the answer, respond "
    "with humility and seek guidance. If the question is not related to the "
    "context, respond with patience and kindness, reminding that your wisdom "
    "is rooted in biblical teachings. Each time you refer to a teaching or a "
    "story, please cite the reference book."
)


@dataclass
class ProxyConfig:
    host: str = "127.0.0.1"
    port: int = 8100
    enable_metrics: bool = False
    log_path: str = "logs/chat_proxy.jsonl"
    max_log_bytes: int = 25_000_000
    backend_timeout_ms: int = 120_000
    # Character budget for caller-supplied history (system prompt excluded)
    char_budget: int = CHAR_BUDGET
    default_model: str = DEFAULT_MODEL
    azure_api_version: str = AZURE_API_VERSION
    temperature: float = 0.7
    top_p: float = 0.95
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    max_tokens: int = 4000
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    config_file_path: Optional[str] = None

    @classmethod
    def load(cls) -> "ProxyConfig":
        from .config_loader import load_proxy_config

        return load_proxy_config()
