"""Chat-completions adapter (OpenAI and compatible APIs).

Sends system + user messages, with an optional inline image as a data URL.
"""

from typing import Any

from app.models.catalog import ProviderType
from app.providers.base import (
    PROBE_MAX_TOKENS,
    PROBE_PROMPT,
    ExecutionResult,
    FileAttachment,
    PreparedRequest,
    PromptConfig,
    ProviderAdapter,
    ProviderConnection,
    as_token_count,
    usage_section,
)

DEFAULT_CHAT_COMPLETIONS_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_CHAT_COMPLETIONS_MODEL = "gpt-4o"


def _headers(connection: ProviderConnection) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {connection.api_key}",
        "Content-Type": "application/json",
    }
    if connection.organization_id:
        headers["OpenAI-Organization"] = connection.organization_id
    return headers


class ChatCompletionsAdapter(ProviderAdapter):
    """Adapter for the chat-completions request/response shape."""

    provider_type = ProviderType.CHAT_COMPLETIONS
    vendor_name = "OpenAI"
    default_model = DEFAULT_CHAT_COMPLETIONS_MODEL

    def build_request(
        self,
        prompt: PromptConfig,
        connection: ProviderConnection,
        input_text: str,
        file: FileAttachment | None,
        options: dict[str, Any] | None,
    ) -> PreparedRequest:
        user_text = prompt.render_user_prompt(input_text)
        user_content: str | list[dict[str, Any]] = user_text
        if file is not None:
            user_content = [
                {"type": "text", "text": user_text},
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{file.media_type};base64,{file.data_base64}",
                    },
                },
            ]

        messages: list[dict[str, Any]] = []
        if prompt.system_prompt:
            messages.append({"role": "system", "content": prompt.system_prompt})
        messages.append({"role": "user", "content": user_content})

        return PreparedRequest(
            method="POST",
            url=connection.api_endpoint or DEFAULT_CHAT_COMPLETIONS_ENDPOINT,
            headers=_headers(connection),
            json={
                "model": self.resolve_model(prompt, connection),
                "messages": messages,
                "max_tokens": prompt.max_output_tokens,
                "temperature": prompt.temperature,
            },
        )

    def build_probe_request(self, connection: ProviderConnection) -> PreparedRequest:
        return PreparedRequest(
            method="POST",
            url=connection.api_endpoint or DEFAULT_CHAT_COMPLETIONS_ENDPOINT,
            headers=_headers(connection),
            json={
                "model": connection.default_model or self.default_model,
                "messages": [{"role": "user", "content": PROBE_PROMPT}],
                "max_tokens": PROBE_MAX_TOKENS,
            },
        )

    def parse_response(self, body: Any) -> ExecutionResult:
        """Read choices[0].message.content and usage token counts."""
        if not isinstance(body, dict):
            raise self.shape_error()
        output = ""
        choices = body.get("choices") or []
        if not isinstance(choices, list):
            raise self.shape_error()
        if choices:
            first = choices[0]
            message = first.get("message") if isinstance(first, dict) else None
            if not isinstance(message, dict):
                raise self.shape_error()
            content = message.get("content")
            if isinstance(content, str):
                output = content
        usage = usage_section(body.get("usage"))
        return ExecutionResult(
            output=output,
            tokens_in=as_token_count(usage.get("prompt_tokens")),
            tokens_out=as_token_count(usage.get("completion_tokens")),
        )
