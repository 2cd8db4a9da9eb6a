"""AI tools backed by the model client."""

import json
import math
import re
import time
from typing import Any

from agent_engine.agent.guards import get_tool_timeout
from agent_engine.agent.tools.base import (
    Tool,
    ToolContext,
    ToolMetadata,
    ToolResult,
    ValidationResult,
)
from agent_engine.core.config import settings

CREDITS_PER_1K_TOKENS = 3
FAILED_CALL_CREDITS = 100

_JSON_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def credits_for_tokens(tokens: int) -> int:
    return max(1, math.ceil(tokens / 1000) * CREDITS_PER_1K_TOKENS)


def _require_string(params: dict[str, Any], key: str) -> ValidationResult:
    value = params.get(key)
    if not value or not isinstance(value, str):
        return ValidationResult.invalid(f"{key} parameter required (string)")
    return ValidationResult.ok()


class AiChatTool(Tool):
    name = "ai.chat"
    description = "Generate text using AI models (for summarization, analysis, writing)"
    category = "utility"

    def validate(self, params: dict[str, Any]) -> ValidationResult:
        return _require_string(params, "prompt")

    def estimate_cost(self, params: dict[str, Any]) -> int:
        estimated_tokens = math.ceil(len(params.get("prompt") or "") / 4) + 1000
        return credits_for_tokens(estimated_tokens)

    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        started = time.monotonic()
        model = params.get("model") or settings.agent_reasoning_model

        try:
            response = context.llm.chat(
                model,
                messages=[{"role": "user", "content": params["prompt"]}],
                max_tokens=params.get("max_tokens") or 1024,
                temperature=params.get("temperature", 0.7),
                timeout=get_tool_timeout(self.name),
            )
        except Exception as e:
            return ToolResult(
                success=False,
                error=str(e),
                metadata=ToolMetadata(
                    duration=int((time.monotonic() - started) * 1000),
                    credits=FAILED_CALL_CREDITS,
                ),
            )

        tokens = response.usage.total_tokens
        return ToolResult(
            success=True,
            data={"content": response.content, "model": response.model},
            metadata=ToolMetadata(
                duration=int((time.monotonic() - started) * 1000),
                credits=credits_for_tokens(tokens),
                tokens=tokens,
            ),
        )


class AiSummarizeTool(Tool):
    name = "ai.summarize"
    description = "Summarize long text into key points"
    category = "utility"

    def __init__(self, chat_tool: AiChatTool | None = None):
        self._chat = chat_tool or AiChatTool()

    def validate(self, params: dict[str, Any]) -> ValidationResult:
        return _require_string(params, "text")

    def estimate_cost(self, params: dict[str, Any]) -> int:
        return credits_for_tokens(math.ceil(len(params.get("text") or "") / 4) + 500)

    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        style = params.get("style", "bullet")
        max_length = params.get("max_length", 200)
        form = "bullet points" if style == "bullet" else "a concise paragraph"

        prompt = (
            f"Summarize the following text in {form} (max {max_length} words):\n\n"
            f"{params['text']}\n\nSummary:"
        )
        return self._chat.execute({"prompt": prompt}, context)


class AiExtractTool(Tool):
    name = "ai.extract"
    description = "Extract structured data from unstructured text"
    category = "utility"

    def __init__(self, chat_tool: AiChatTool | None = None):
        self._chat = chat_tool or AiChatTool()

    def validate(self, params: dict[str, Any]) -> ValidationResult:
        result = _require_string(params, "text")
        if not result.valid:
            return result
        if not isinstance(params.get("schema"), dict) or not params["schema"]:
            return ValidationResult.invalid("schema parameter required (object)")
        return ValidationResult.ok()

    def estimate_cost(self, params: dict[str, Any]) -> int:
        return credits_for_tokens(math.ceil(len(params.get("text") or "") / 4) + 1000)

    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        fields = "\n".join(
            f"- {name}: {desc}" for name, desc in params["schema"].items()
        )
        prompt = (
            "Extract the following information from the text and return it as JSON:"
            f"\n\nFields to extract:\n{fields}\n\nText:\n{params['text']}\n\n"
            "Return only valid JSON with the extracted data. "
            "If a field cannot be found, use null."
        )

        result = self._chat.execute({"prompt": prompt}, context)
        if result.success:
            extracted = _parse_json_object(result.data["content"])
            if extracted is not None:
                result.data = {**result.data, "extracted": extracted}
        return result


def _parse_json_object(content: str) -> dict[str, Any] | None:
    match = _JSON_FENCE.search(content) or _JSON_OBJECT.search(content)
    if not match:
        return None
    text = match.group(1) if match.re is _JSON_FENCE else match.group(0)
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None
