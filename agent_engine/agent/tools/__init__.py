"""Agent tools and the registry that resolves them."""

import httpx

from .ai import AiChatTool, AiExtractTool, AiSummarizeTool
from .base import Tool, ToolContext, ToolMetadata, ToolResult, ValidationResult
from .http import HttpGetTool, HttpPostTool
from .registry import ToolRegistry


def build_default_registry(http_client: httpx.Client | None = None) -> ToolRegistry:
    """Create a registry holding every built-in tool."""
    chat = AiChatTool()
    return ToolRegistry(
        [
            HttpGetTool(http_client),
            HttpPostTool(http_client),
            chat,
            AiSummarizeTool(chat),
            AiExtractTool(chat),
        ]
    )


__all__ = [
    "AiChatTool",
    "AiExtractTool",
    "AiSummarizeTool",
    "HttpGetTool",
    "HttpPostTool",
    "Tool",
    "ToolContext",
    "ToolMetadata",
    "ToolRegistry",
    "ToolResult",
    "ValidationResult",
    "build_default_registry",
]
