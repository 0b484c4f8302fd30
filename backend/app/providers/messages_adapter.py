"""Messages adapter (Anthropic API).

The system prompt is a top-level field; the user turn is a list of content
blocks with an optional base64 image block ahead of the text.
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

DEFAULT_MESSAGES_ENDPOINT = "https://api.anthropic.com/v1/messages"
DEFAULT_MESSAGES_MODEL = "claude-3-5-sonnet-latest"
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"


def _headers(connection: ProviderConnection) -> dict[str, str]:
    return {
        "x-api-key": connection.api_key or "",
        "anthropic-version": connection.api_version or DEFAULT_ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }


class MessagesAdapter(ProviderAdapter):
    """Adapter for the messages request/response shape."""

    provider_type = ProviderType.MESSAGES
    vendor_name = "Anthropic"
    default_model = DEFAULT_MESSAGES_MODEL

    def build_request(
        self,
        prompt: PromptConfig,
        connection: ProviderConnection,
        input_text: str,
        file: FileAttachment | None,
        options: dict[str, Any] | None,
    ) -> PreparedRequest:
        content: list[dict[str, Any]] = []
        if file is not None:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": file.media_type,
                        "data": file.data_base64,
                    },
                }
            )
        content.append({"type": "text", "text": prompt.render_user_prompt(input_text)})

        payload: dict[str, Any] = {
            "model": self.resolve_model(prompt, connection),
            "max_tokens": prompt.max_output_tokens,
            "temperature": prompt.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if prompt.system_prompt:
            payload["system"] = prompt.system_prompt

        return PreparedRequest(
            method="POST",
            url=connection.api_endpoint or DEFAULT_MESSAGES_ENDPOINT,
            headers=_headers(connection),
            json=payload,
        )

    def build_probe_request(self, connection: ProviderConnection) -> PreparedRequest:
        return PreparedRequest(
            method="POST",
            url=connection.api_endpoint or DEFAULT_MESSAGES_ENDPOINT,
            headers=_headers(connection),
            json={
                "model": connection.default_model or self.default_model,
                "max_tokens": PROBE_MAX_TOKENS,
                "messages": [{"role": "user", "content": PROBE_PROMPT}],
            },
        )

    def parse_response(self, body: Any) -> ExecutionResult:
        """Concatenate the text blocks of content; read usage token counts."""
        if not isinstance(body, dict):
            raise self.shape_error()
        blocks = body.get("content") or []
        if not isinstance(blocks, list):
            raise self.shape_error()
        output = "".join(
            block["text"]
            for block in blocks
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        )
        usage = usage_section(body.get("usage"))
        return ExecutionResult(
            output=output,
            tokens_in=as_token_count(usage.get("input_tokens")),
            tokens_out=as_token_count(usage.get("output_tokens")),
        )
