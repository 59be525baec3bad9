"""External collaborator interfaces and bundled implementations."""

from councilflow.runtime.collaborators.base import (
    AgentDirectory,
    CharacterDirectory,
    ChatResult,
    CurationStore,
    LLMClient,
    ThreadLog,
)
from councilflow.runtime.collaborators.llm import HttpLLMClient, LLMError
from councilflow.runtime.collaborators.memory import (
    MemoryCharacterDirectory,
    MemoryCuration,
    MemoryDirectory,
    MemoryThreadLog,
)

__all__ = [
    "AgentDirectory",
    "CharacterDirectory",
    "ChatResult",
    "CurationStore",
    "HttpLLMClient",
    "LLMClient",
    "LLMError",
    "MemoryCharacterDirectory",
    "MemoryCuration",
    "MemoryDirectory",
    "MemoryThreadLog",
    "ThreadLog",
]
