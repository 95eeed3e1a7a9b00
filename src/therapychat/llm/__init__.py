"""LLM backends for therapychat."""

from therapychat.llm.hosted import BYOKChatModel, HostedChatModel
from therapychat.llm.ollama import OllamaChatModel
from therapychat.llm.protocol import LanguageModel
from therapychat.llm.registry import ModelRegistry, ResolvedModel

__all__ = [
    "BYOKChatModel",
    "HostedChatModel",
    "LanguageModel",
    "ModelRegistry",
    "OllamaChatModel",
    "ResolvedModel",
]
