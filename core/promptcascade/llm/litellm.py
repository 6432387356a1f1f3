"""LiteLLM model backend.

Routes every node through ``litellm.acompletion`` so any provider LiteLLM
supports can run prompts. When a node allows questions, an
``ask_user_question`` tool is offered to the model; a call to it becomes a
QuestionInterrupt, and the conversation is parked under the response id
until the runner resumes it with the user's answer.
"""

import json
import logging
import uuid
from typing import Any

import litellm

from promptcascade.config import LLMConfig
from promptcascade.errors import ModelError
from promptcascade.llm.backend import (
    ExecutionResult,
    ModelBackend,
    QuestionInterrupt,
    ResumeOptions,
    TokenUsage,
    substitute_variables,
)
from promptcascade.schemas.node import PromptNode

logger = logging.getLogger(__name__)

QUESTION_TOOL_NAME = "ask_user_question"
DEFAULT_USER_MESSAGE = "Execute this prompt"

QUESTION_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": QUESTION_TOOL_NAME,
        "description": (
            "Ask the user for a missing piece of information before answering. "
            "The answer is stored in the named variable."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "question": {"type": "string", "description": "Question to show the user"},
                "variable_name": {
                    "type": "string",
                    "description": "Variable that will hold the answer",
                },
                "description": {"type": "string", "description": "Why this is needed"},
            },
            "required": ["question", "variable_name"],
        },
    },
}


class LiteLLMBackend(ModelBackend):
    """
    ModelBackend backed by LiteLLM.

    Example:
        backend = LiteLLMBackend(LLMConfig(model="openai/gpt-4o-mini"))
        result = await backend.invoke(node, {"topic": "pricing"})
    """

    def __init__(self, config: LLMConfig | None = None, **extra_kwargs: Any):
        self.config = config or LLMConfig()
        self.extra_kwargs = extra_kwargs
        # Parked conversations awaiting an answer, keyed by response id
        self._pending: dict[str, list[dict[str, Any]]] = {}

    def discard(self, response_id: str) -> None:
        self._pending.pop(response_id, None)

    def build_messages(self, node: PromptNode, variables: dict[str, str]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        system = substitute_variables(node.system_prompt, variables)
        if system.strip():
            messages.append({"role": "system", "content": system})
        user = substitute_variables(node.user_prompt, variables)
        messages.append({"role": "user", "content": user if user.strip() else DEFAULT_USER_MESSAGE})
        return messages

    def completion_kwargs(self, node: PromptNode, messages: list[dict[str, Any]]) -> dict:
        settings = node.model_settings
        kwargs: dict[str, Any] = {
            "model": settings.model or self.config.model,
            "messages": messages,
            "max_tokens": settings.max_completion_tokens
            or settings.max_tokens
            or self.config.max_tokens,
            "timeout": self.config.timeout,
        }
        temperature = settings.temperature
        if temperature is None:
            temperature = self.config.temperature
        if temperature is not None:
            kwargs["temperature"] = temperature
        if settings.top_p is not None:
            kwargs["top_p"] = settings.top_p
        if settings.reasoning_effort:
            kwargs["reasoning_effort"] = settings.reasoning_effort
        if settings.response_format:
            kwargs["response_format"] = settings.response_format
        if settings.allow_questions:
            kwargs["tools"] = [QUESTION_TOOL]
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        kwargs.update(self.extra_kwargs)
        return kwargs

    async def invoke(
        self,
        node: PromptNode,
        variables: dict[str, str],
        resume: ResumeOptions | None = None,
    ) -> ExecutionResult:
        if resume is not None and resume.response_id in self._pending:
            messages = self._pending.pop(resume.response_id)
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": resume.call_id,
                    "content": resume.answer,
                }
            )
        else:
            messages = self.build_messages(node, variables)

        kwargs = self.completion_kwargs(node, messages)
        logger.debug(
            f"Calling {kwargs['model']} for node {node.id}", extra={"model": kwargs["model"]}
        )
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise ModelError(f"{kwargs['model']} request failed: {e}") from e

        return self._to_result(response, messages, kwargs["model"])

    def _to_result(
        self, response: Any, messages: list[dict[str, Any]], model: str
    ) -> ExecutionResult:
        if not getattr(response, "choices", None):
            raise ModelError(f"{model} returned no choices")

        choice = response.choices[0]
        message = choice.message
        usage_data = getattr(response, "usage", None)
        usage = TokenUsage(
            input_tokens=getattr(usage_data, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage_data, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage_data, "total_tokens", 0) or 0,
        )
        response_id = getattr(response, "id", None) or uuid.uuid4().hex
        result = ExecutionResult(
            response=message.content or "",
            usage=usage,
            finish_reason=choice.finish_reason or "stop",
            model=getattr(response, "model", None) or model,
            response_id=response_id,
        )

        for call in getattr(message, "tool_calls", None) or []:
            if call.function.name != QUESTION_TOOL_NAME:
                continue
            try:
                args = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError as e:
                raise ModelError(f"Malformed {QUESTION_TOOL_NAME} arguments: {e}") from e

            self._pending[response_id] = [
                *messages,
                {
                    "role": "assistant",
                    "content": message.content or "",
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function.name,
                                "arguments": call.function.arguments,
                            },
                        }
                    ],
                },
            ]
            result.interrupt = QuestionInterrupt(
                question=args.get("question", ""),
                variable_name=args.get("variable_name", "answer"),
                response_id=response_id,
                call_id=call.id,
                description=args.get("description"),
            )
            break
        return result
