"""Amazon Bedrock InvokeModel adapter for prompt-templated models.

Llama 3 and Mistral have no tool-call channel over InvokeModel; they are
prompted to answer with a sentinel-framed JSON block instead (see
:mod:`meridian.sentinel`). Streamed chunks arrive as JSON bytes wrapped in
``{"chunk": {"bytes": ...}}`` and the last one carries
``amazon-bedrock-invocationMetrics``.

Body shapes read here:

- Llama 3: ``generation``, ``prompt_token_count``, ``generation_token_count``,
  ``stop_reason``.
- Mistral: ``outputs[0].text``, ``outputs[0].stop_reason``.
- Mistral chat-format models (``native_tool_calls``):
  ``choices[0].message.content`` / ``tool_calls``, ``choices[0].stop_reason``.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any

from meridian.adapters.base import ToolCallFragment, VendorDelta, int_or_none
from meridian.finish_reasons import BEDROCK_INVOKE, FinishReasonMapper
from meridian.models import ToolCall, UsageSnapshot, new_id
from meridian.sentinel import DEFAULT_MARKERS, SentinelMarkers


_METRICS_KEY = "amazon-bedrock-invocationMetrics"


def _first(items: Any) -> dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def _load_json(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    return json.loads(raw)


@dataclass(frozen=True)
class BedrockInvokeAdapter:
    """Reads InvokeModel bodies; tool calls come back sentinel-framed."""

    name: str = "bedrock_invoke"
    finish_reasons: FinishReasonMapper = BEDROCK_INVOKE
    encoding: str = "cl100k_base"
    sentinel: SentinelMarkers | None = DEFAULT_MARKERS
    #: Model answers in chat format with native ``tool_calls``.
    native_tool_calls: bool = False
    #: Model escapes underscores (``\\_``) in generated text.
    unescape_underscores: bool = False

    def decode(self, event: Any) -> Any:
        """Unwrap ``{"chunk": {"bytes": ...}}`` into the decoded JSON body."""
        if isinstance(event, dict):
            chunk = event.get("chunk")
            if isinstance(chunk, dict) and "bytes" in chunk:
                return _load_json(chunk["bytes"])
            return event
        return _load_json(event)

    def normalize_text(self, text: str) -> str:
        if self.unescape_underscores:
            return text.replace("\\_", "_")
        return text

    def escape_tail(self, text: str) -> int:
        # A trailing backslash may pair with an underscore in the next chunk.
        if self.unescape_underscores and text.endswith("\\"):
            return 1
        return 0

    def _chat_message(self, record: Any) -> dict[str, Any]:
        if not self.native_tool_calls or not isinstance(record, dict):
            return {}
        message = _first(record.get("choices")).get("message")
        return message if isinstance(message, dict) else {}

    def extract_text_delta(self, record: Any) -> str | None:
        if not isinstance(record, dict):
            return None
        if self.native_tool_calls:
            text = self._chat_message(record).get("content")
        elif "generation" in record:
            text = record.get("generation")
        else:
            text = _first(record.get("outputs")).get("text")
        return text if isinstance(text, str) and text else None

    def extract_tool_call_fragments(self, record: Any) -> tuple[ToolCallFragment, ...]:
        _ = record
        return ()

    def extract_tool_call_block(self, record: Any) -> tuple[ToolCall, ...] | None:
        """Native tool calls arrive complete in one chunk."""
        calls = self._chat_message(record).get("tool_calls")
        if not isinstance(calls, list) or not calls:
            return None
        block: list[ToolCall] = []
        for call in calls:
            if not isinstance(call, dict):
                continue
            function = call.get("function") or {}
            arguments = function.get("arguments")
            block.append(
                ToolCall(
                    id=call.get("id") or new_id(),
                    name=function.get("name") or "",
                    arguments=arguments if isinstance(arguments, str) else json.dumps(arguments or {}),
                )
            )
        return tuple(block) or None

    def extract_usage(self, record: Any) -> UsageSnapshot | None:
        if not isinstance(record, dict):
            return None
        metrics = record.get(_METRICS_KEY)
        if isinstance(metrics, dict):
            prompt = int_or_none(metrics.get("inputTokenCount"))
            completion = int_or_none(metrics.get("outputTokenCount"))
            total = prompt + completion if prompt is not None and completion is not None else None
            return UsageSnapshot(prompt=prompt, completion=completion, total=total)
        if "prompt_token_count" in record or "generation_token_count" in record:
            return UsageSnapshot(
                prompt=int_or_none(record.get("prompt_token_count")),
                completion=int_or_none(record.get("generation_token_count")),
            )
        return None

    def extract_stop_reason(self, record: Any) -> Any:
        if not isinstance(record, dict):
            return None
        if self.native_tool_calls:
            reason = _first(record.get("choices")).get("stop_reason")
        else:
            reason = _first(record.get("outputs")).get("stop_reason")
        return reason or record.get("stop_reason")

    def extract_response_id(self, record: Any) -> str | None:
        _ = record
        return None

    def parse_response(self, response: Any) -> VendorDelta:
        """Reduce an ``invoke_model`` response (or its decoded body) to one delta."""
        request_id = None
        record = response
        if isinstance(response, dict) and "body" in response:
            body = response["body"]
            raw = body.read() if hasattr(body, "read") else body
            record = _load_json(raw)
            meta = response.get("ResponseMetadata")
            if isinstance(meta, dict) and isinstance(meta.get("RequestId"), str):
                request_id = meta["RequestId"]
        elif not isinstance(response, dict):
            record = _load_json(response)
        return VendorDelta(
            text=self.extract_text_delta(record),
            tool_call_block=self.extract_tool_call_block(record),
            usage=self.extract_usage(record),
            stop_reason=self.extract_stop_reason(record),
            response_id=request_id,
        )
