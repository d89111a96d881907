"""Text-generation executor: sends a rendered prompt to the LLM provider."""

from typing import Any, Mapping

from chatflow.executors.base import Branch, ExecutionResult, config_value
from chatflow.services.llm import TextGenerator
from chatflow.state.context import ExecutionContext

DEFAULT_RESPONSE_VARIABLE = "ai_response"
MISSING_PROMPT_MESSAGE = "Lo siento, no puedo responder a eso en este momento."


async def execute_text_generation(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
    *,
    generator: TextGenerator | None = None,
) -> ExecutionResult:
    prompt = context.render(config_value(config, "prompt", "userPrompt"))
    if generator is None or not prompt.strip():
        return ExecutionResult.of(Branch.ERROR, MISSING_PROMPT_MESSAGE, context)

    system_prompt = config_value(config, "systemPrompt", "system_prompt")
    text = await generator.generate(
        prompt,
        system_prompt=context.render(system_prompt) if system_prompt else None,
    )

    variable = config_value(config, "responseVariableName", "response_variable",
                            default=DEFAULT_RESPONSE_VARIABLE)
    return ExecutionResult.of(Branch.RESPONSE, text, context.merge({variable: text}))
