"""Agent orchestration: generate, detect tool calls, execute, repeat."""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from tether.config import Config, get_config
from tether.context import ConversationContext, format_tool_result
from tether.exceptions import (
    GenerationFailedError,
    LLMError,
    PermissionDeniedError,
    ToolError,
    ToolNotFoundError,
)
from tether.extraction import ToolCallExtractor
from tether.llm import GenerateOptions, LLMProvider
from tether.logging import get_logger
from tether.messages import ToolResult
from tether.permissions import PermissionManager
from tether.prompt import TOOLS_HEADER, format_system_prompt, tool_usage_instructions
from tether.tools import ToolRegistry

log = get_logger(__name__)

FALLBACK_RESPONSE = (
    "I'm sorry, I wasn't able to generate a proper response. "
    "Could you please try again or rephrase your question?"
)
ITERATION_LIMIT_NOTICE = (
    "I stopped after {count} tool calls without reaching a final answer. "
    "The request may be only partially complete."
)

_ROLE_PREFIXES = {
    "user": "User: ",
    "assistant": "Assistant: ",
    "tool": "Tool Result: ",
}


class LoopState(str, Enum):
    """Phases of one user turn."""

    AWAITING_USER_INPUT = "awaiting_user_input"
    GENERATING = "generating"
    EXTRACTING_TOOL_CALL = "extracting_tool_call"
    REQUESTING_PERMISSION = "requesting_permission"
    EXECUTING = "executing"
    DONE = "done"


def combine_response(leftover: str, follow_up: str, max_chars: int = 0) -> str:
    """Join leftover commentary and a follow-up reply.

    When ``max_chars`` is set and the joined text is longer, the oldest
    leftover text is cut first; the follow-up is never shortened.
    """
    if not leftover:
        return follow_up
    if max_chars and len(leftover) + 2 + len(follow_up) > max_chars:
        room = max_chars - len(follow_up) - 2
        if room <= 0:
            return follow_up
        leftover = leftover[-room:].lstrip()
        if not leftover:
            return follow_up
    return f"{leftover}\n\n{follow_up}"


class Agent:
    """Drives one conversation against a text-completion model.

    Collaborators are injected; nothing here reaches for module globals
    except ``get_config()`` when no config is passed.
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        permissions: PermissionManager | None = None,
        config: Config | None = None,
        system_prompt: str | None = None,
        extractor: ToolCallExtractor | None = None,
        status_callback: Callable[[str], None] | None = None,
        tool_output_callback: Callable[[str, dict[str, Any], str], None] | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: Language model client
            tools: Registry of executable tools
            permissions: Permission gate; built from config when omitted
            config: Settings; the global config when omitted
            system_prompt: Template overriding ``agent.system_prompt``
            extractor: Tool-call decoder chain
            status_callback: Optional runtime status callback
            tool_output_callback: Optional callback receiving each tool's rendered output
        """
        self.config = config or get_config()
        self.provider = provider
        self.tools = tools
        self.permissions = permissions or PermissionManager.from_config(self.config)
        self.extractor = extractor or ToolCallExtractor()
        self.status_callback = status_callback
        self.tool_output_callback = tool_output_callback

        self.context = ConversationContext(
            max_tokens=self.config.context.max_tokens,
            truncate_oldest=self.config.context.truncate_oldest,
        )
        self.model = self.config.model.model or provider.model
        self.temperature = self.config.model.temperature
        self.max_tokens = self.config.model.max_tokens
        self.max_iterations = max(1, int(self.config.agent.max_iterations))
        self.max_response_chars = int(self.config.agent.max_response_chars or 0)

        self.state = LoopState.AWAITING_USER_INPUT
        self.last_usage: dict[str, int] = self._empty_usage()
        self.total_usage: dict[str, int] = self._empty_usage()

        template = system_prompt or self.config.agent.system_prompt or None
        self.add_system_message(
            format_system_prompt(template, self.tools.get_definitions(), cwd=Path.cwd())
        )

    @staticmethod
    def _empty_usage() -> dict[str, int]:
        return {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        }

    @staticmethod
    def _accumulate_usage(target: dict[str, int], usage: dict[str, int] | None) -> None:
        """Add usage values into target totals."""
        if not usage:
            return
        prompt = int(usage.get("prompt_tokens", 0))
        completion = int(usage.get("completion_tokens", 0))
        target["prompt_tokens"] += prompt
        target["completion_tokens"] += completion
        target["total_tokens"] += int(usage.get("total_tokens", prompt + completion))

    def _transition(self, state: LoopState, **details: Any) -> None:
        log.debug("Loop state", previous=self.state.value, state=state.value, **details)
        self.state = state

    def _set_runtime_status(self, status: str) -> None:
        """Forward runtime status updates when a callback is configured."""
        if self.status_callback:
            try:
                self.status_callback(status)
            except Exception as e:
                log.debug("Status callback failed", error=str(e))

    def _emit_tool_output(self, tool_name: str, arguments: dict[str, Any], output: str) -> None:
        """Forward rendered tool output to the UI when configured."""
        if not self.tool_output_callback:
            return
        try:
            self.tool_output_callback(tool_name, arguments, output)
        except Exception as e:
            log.debug("Tool output callback failed", error=str(e))

    # Context and runtime settings

    def add_system_message(self, content: str) -> None:
        self.context.add_system_message(content)

    def clear_context(self) -> None:
        """Forget the conversation but keep system messages."""
        self.context.clear()

    def set_model(self, model: str) -> None:
        self.model = model
        log.info("Model changed", model=model)

    def set_temperature(self, temperature: float) -> None:
        self.temperature = float(temperature)

    def set_max_tokens(self, max_tokens: int) -> None:
        self.max_tokens = int(max_tokens)

    # Generation

    def build_prompts(self) -> tuple[str, str]:
        """Flatten the conversation into a (system, user) prompt pair."""
        messages = self.context.get_formatted_messages()
        if not messages:
            raise LLMError("no messages in context to generate a response")

        system_parts = [m["content"] for m in messages if m["role"] == "system" and m["content"]]
        system_prompt = "\n\n".join(system_parts)
        definitions = self.tools.get_definitions()
        if definitions and TOOLS_HEADER not in system_prompt:
            instructions = tool_usage_instructions(definitions)
            system_prompt = f"{system_prompt}\n\n{instructions}" if system_prompt else instructions

        lines: list[str] = []
        for message in messages:
            prefix = _ROLE_PREFIXES.get(message["role"])
            if prefix is None or not message["content"]:
                continue
            lines.append(f"{prefix}{message['content']}\n\n")
        if not lines:
            lines.append("User: Hello\n\n")
        lines.append("Assistant: ")
        return system_prompt, "".join(lines)

    @staticmethod
    def _clean_response(text: str) -> str:
        cleaned = text or ""
        if cleaned.startswith("Assistant:"):
            cleaned = cleaned[len("Assistant:"):].strip()
        if not cleaned.strip():
            log.warning("Empty response from model, using fallback")
            return FALLBACK_RESPONSE
        return cleaned

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - asyncio.get_running_loop().time()

    async def generate_response(self, deadline: float | None = None) -> str:
        """One model round trip over the current context.

        Raises:
            LLMError or asyncio.TimeoutError on failure
        """
        self._transition(LoopState.GENERATING)
        self._set_runtime_status("thinking")
        system_prompt, user_prompt = self.build_prompts()
        options = GenerateOptions(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= 0:
            raise asyncio.TimeoutError()

        log.debug(
            "Sending generate request",
            model=self.model,
            system_len=len(system_prompt),
            prompt_len=len(user_prompt),
        )
        response = await asyncio.wait_for(
            self.provider.generate(system_prompt, user_prompt, options),
            timeout=remaining,
        )
        self._accumulate_usage(self.last_usage, response.usage)
        return self._clean_response(response.content)

    # Tools

    async def execute_tool(
        self,
        tool_name: str,
        params: dict[str, Any],
        deadline: float | None = None,
    ) -> Any:
        """Validate, authorise and run one tool call.

        Raises:
            ToolNotFoundError, InvalidToolParamsError, PermissionDeniedError,
            ToolExecutionError
        """
        tool = self.tools.get_tool(tool_name)
        if tool is None:
            raise ToolNotFoundError(tool_name)
        tool.validate_arguments(params)

        self._transition(LoopState.REQUESTING_PERMISSION, tool=tool_name)
        try:
            granted = await asyncio.wait_for(
                self.permissions.request_permission(tool_name, params, tool),
                timeout=self._remaining(deadline),
            )
        except asyncio.TimeoutError as e:
            raise PermissionDeniedError(tool_name, "approval timed out") from e
        except Exception as e:
            raise PermissionDeniedError(tool_name, f"permission request failed: {e}") from e
        if not granted:
            raise PermissionDeniedError(tool_name)

        self._transition(LoopState.EXECUTING, tool=tool_name)
        self._set_runtime_status(f"running {tool_name}")
        return await self.tools.execute(tool_name, params)

    # Turn

    async def process_message(self, text: str, timeout: float | None = None) -> str:
        """Run one user turn to completion and return the final answer.

        Args:
            text: User message
            timeout: Optional deadline in seconds for the whole turn

        Raises:
            GenerationFailedError: if the first generation fails or times out
        """
        deadline = None
        if timeout is not None:
            deadline = asyncio.get_running_loop().time() + float(timeout)

        self.last_usage = self._empty_usage()
        log.debug("Processing message", length=len(text))
        self.context.add_user_message(text)

        try:
            response = await self.generate_response(deadline)
        except asyncio.TimeoutError as e:
            self._transition(LoopState.AWAITING_USER_INPUT)
            raise GenerationFailedError("Timed out waiting for the model", cause=e) from e
        except Exception as e:
            self._transition(LoopState.AWAITING_USER_INPUT)
            log.error("Failed to generate response", error=str(e))
            raise GenerationFailedError(f"Failed to generate response: {e}", cause=e) from e

        final_response = response
        iterations = 0
        completed = False
        while iterations < self.max_iterations:
            iterations += 1
            self._transition(LoopState.EXTRACTING_TOOL_CALL, iteration=iterations)
            extraction = self.extractor.extract(final_response)
            if not extraction.found:
                completed = True
                break

            call = extraction.tool_call
            log.info("Tool call detected", iteration=iterations, tool=call.tool_name)
            self.context.add_tool_call_message(call.tool_name, call.params)

            result: Any = None
            error: ToolError | None = None
            try:
                result = await self.execute_tool(call.tool_name, call.params, deadline)
            except ToolError as e:
                error = e
                log.warning("Tool call failed", tool=call.tool_name, error=str(e))
            self.context.add_tool_result_message(result, error)
            self._emit_tool_output(
                call.tool_name,
                dict(call.params),
                format_tool_result(ToolResult(result=result, error=str(error) if error else None)),
            )

            try:
                follow_up = await self.generate_response(deadline)
            except asyncio.TimeoutError:
                log.warning("Follow-up generation timed out; using best answer so far", iteration=iterations)
                final_response = extraction.remaining_text or final_response
                completed = True
                break
            except Exception as e:
                log.error("Failed to generate follow-up response", error=str(e), iteration=iterations)
                final_response = extraction.remaining_text or final_response
                completed = True
                break

            final_response = combine_response(
                extraction.remaining_text,
                follow_up,
                self.max_response_chars,
            )

        if not completed and self.extractor.extract(final_response).found:
            log.warning("Reached maximum number of tool call iterations", max_iterations=self.max_iterations)
            notice = ITERATION_LIMIT_NOTICE.format(count=self.max_iterations)
            final_response = f"{final_response}\n\n{notice}" if final_response else notice

        self.context.add_assistant_message(final_response)
        self._accumulate_usage(self.total_usage, self.last_usage)
        self._transition(LoopState.DONE, iterations=iterations)
        self._transition(LoopState.AWAITING_USER_INPUT)
        return final_response
