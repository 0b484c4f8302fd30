"""Custom HTTP adapter.

Posts a simple JSON document to an operator-configured endpoint. Also
serves as the fallback for provider types without a dedicated adapter.
"""

import json
from typing import Any

from app.models.catalog import ProviderType
from app.providers.base import (
    ExecutionResult,
    FileAttachment,
    PreparedRequest,
    PromptConfig,
    ProviderAdapter,
    ProviderConnection,
    as_token_count,
)

# Response keys checked in order for the output text
_OUTPUT_KEYS = ("output", "text", "result")


def _headers(connection: ProviderConnection) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if connection.api_key:
        headers["Authorization"] = f"Bearer {connection.api_key}"
    return headers


class CustomAdapter(ProviderAdapter):
    """Adapter for operator-defined HTTP endpoints.

    Request body: {"input", "systemPrompt", "userPromptTemplate", "options"}.
    Response: the first string among output/text/result (else the whole
    body as JSON), with optional inputTokens/outputTokens.
    """

    provider_type = ProviderType.CUSTOM
    vendor_name = "Custom"
    requires_api_key = False
    requires_endpoint = True

    def build_request(
        self,
        prompt: PromptConfig,
        connection: ProviderConnection,
        input_text: str,
        file: FileAttachment | None,
        options: dict[str, Any] | None,
    ) -> PreparedRequest:
        payload: dict[str, Any] = {
            "input": input_text,
            "systemPrompt": prompt.system_prompt,
            "userPromptTemplate": prompt.user_prompt_template,
        }
        if options:
            payload["options"] = options
        return PreparedRequest(
            method="POST",
            url=connection.api_endpoint or "",
            headers=_headers(connection),
            json=payload,
        )

    def build_probe_request(self, connection: ProviderConnection) -> PreparedRequest:
        return PreparedRequest(
            method="GET",
            url=connection.api_endpoint or "",
            headers=_headers(connection),
        )

    def parse_response(self, body: Any) -> ExecutionResult:
        if not isinstance(body, dict):
            return ExecutionResult(output=json.dumps(body))
        output = next(
            (body[key] for key in _OUTPUT_KEYS if isinstance(body.get(key), str) and body[key]),
            None,
        )
        if output is None:
            output = json.dumps(body)
        return ExecutionResult(
            output=output,
            tokens_in=as_token_count(body.get("inputTokens")),
            tokens_out=as_token_count(body.get("outputTokens")),
        )
