"""Generate-content adapter (Google Gemini API).

The endpoint is a base URL; the model is part of the path. The API key is
sent in the x-goog-api-key header rather than the query string so it never
appears in URLs or access logs.
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

DEFAULT_GENERATE_CONTENT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GENERATE_CONTENT_MODEL = "gemini-1.5-pro"


def _url(connection: ProviderConnection, model: str | None) -> str:
    base = (connection.api_endpoint or DEFAULT_GENERATE_CONTENT_BASE_URL).rstrip("/")
    return f"{base}/models/{model}:generateContent"


def _headers(connection: ProviderConnection) -> dict[str, str]:
    return {
        "x-goog-api-key": connection.api_key or "",
        "Content-Type": "application/json",
    }


class GenerateContentAdapter(ProviderAdapter):
    """Adapter for the generateContent request/response shape."""

    provider_type = ProviderType.GENERATE_CONTENT
    vendor_name = "Google"
    default_model = DEFAULT_GENERATE_CONTENT_MODEL

    def build_request(
        self,
        prompt: PromptConfig,
        connection: ProviderConnection,
        input_text: str,
        file: FileAttachment | None,
        options: dict[str, Any] | None,
    ) -> PreparedRequest:
        parts: list[dict[str, Any]] = []
        if file is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": file.media_type,
                        "data": file.data_base64,
                    }
                }
            )
        parts.append({"text": prompt.render_user_prompt(input_text)})

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "maxOutputTokens": prompt.max_output_tokens,
                "temperature": prompt.temperature,
            },
        }
        if prompt.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": prompt.system_prompt}]}

        return PreparedRequest(
            method="POST",
            url=_url(connection, self.resolve_model(prompt, connection)),
            headers=_headers(connection),
            json=payload,
        )

    def build_probe_request(self, connection: ProviderConnection) -> PreparedRequest:
        return PreparedRequest(
            method="POST",
            url=_url(connection, connection.default_model or self.default_model),
            headers=_headers(connection),
            json={
                "contents": [{"role": "user", "parts": [{"text": PROBE_PROMPT}]}],
                "generationConfig": {"maxOutputTokens": PROBE_MAX_TOKENS},
            },
        )

    def parse_response(self, body: Any) -> ExecutionResult:
        """Concatenate text parts of the first candidate; read usageMetadata."""
        if not isinstance(body, dict):
            raise self.shape_error()
        output = ""
        candidates = body.get("candidates") or []
        if not isinstance(candidates, list):
            raise self.shape_error()
        if candidates:
            first = candidates[0]
            if not isinstance(first, dict):
                raise self.shape_error()
            content = first.get("content") or {}
            if not isinstance(content, dict):
                raise self.shape_error()
            parts = content.get("parts") or []
            if not isinstance(parts, list):
                raise self.shape_error()
            output = "".join(
                part["text"]
                for part in parts
                if isinstance(part, dict) and isinstance(part.get("text"), str)
            )
        usage = usage_section(body.get("usageMetadata"))
        return ExecutionResult(
            output=output,
            tokens_in=as_token_count(usage.get("promptTokenCount")),
            tokens_out=as_token_count(usage.get("candidatesTokenCount")),
        )
