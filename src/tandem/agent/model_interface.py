"""
Model interface for Tandem.

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, loop,
tools) stays provider-agnostic and talks to a :class:`BaseModelClient`.

Supported back-ends:

1. **Gemini** via the ``google-genai`` SDK (default, with safety settings).
2. **OpenAI** chat completions with native tool calling.
3. **Anthropic** messages with native tool use.

Provider failures are classified here, once, into :class:`~tandem.core.errors.ModelErrorKind`.
Rate limits are retried with exponential back-off; every round trip is bounded by a timeout.
Additional providers can be added by subclassing :class:`BaseModelClient` and registering via
:func:`register_model`.
"""

import asyncio
import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
)

import httpx

from tandem.core.errors import (
    ModelErrorKind,
    RemoteModelError,
)
from tandem.core.schema import (
    FunctionCall,
    ModelReply,
    Part,
    ToolDeclaration,
    Turn,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_MODEL_REGISTRY: dict[str, Type["BaseModelClient"]] = {}


def register_model(name: str) -> Callable:
    """Decorator to register a model client class under *name*."""

    def wrapper(cls: Type["BaseModelClient"]) -> Type["BaseModelClient"]:
        _MODEL_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model(provider: str, **kwargs: Any) -> "BaseModelClient":
    """
    Factory that returns an instantiated model client for *provider*.

    Keyword arguments are passed to the client constructor (``api_key``, ``model``,
    ``max_output_tokens``, ``timeout``, ``max_retries``).
    """
    cls = _MODEL_REGISTRY.get(provider.lower())
    if cls is None:
        raise ValueError(f"Model provider '{provider}' is not registered.")
    return cls(**kwargs)


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseModelClient(ABC):
    """Abstract remote model: conversation + tool declarations -> text or function calls."""

    RETRY_BASE_DELAY = 0.5

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "",
        max_output_tokens: int = 2048,
        timeout: Optional[float] = None,
        max_retries: int = 3,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.max_retries = max_retries

    async def generate(
        self,
        history: Sequence[Turn],
        parts: Sequence[Part],
        tools: Sequence[ToolDeclaration] = (),
    ) -> ModelReply:
        """
        Send *parts* as the next user turn after *history* and return the model's reply.

        Raises
        ------
        RemoteModelError
            Classified failure.  Rate limits are retried ``max_retries`` times first.
        """
        for attempt in range(self.max_retries + 1):
            try:
                reply = await asyncio.wait_for(
                    self._generate(list(history), list(parts), list(tools)), self.timeout
                )
            except asyncio.TimeoutError as exc:
                raise RemoteModelError(
                    ModelErrorKind.TIMEOUT, f"No answer from {self.model} within {self.timeout}s."
                ) from exc
            except RemoteModelError as exc:
                error = exc
            except Exception as exc:  # pylint: disable=broad-except
                error = self.classify_error(exc)
                error.__cause__ = exc
            else:
                if reply.blocked:
                    raise RemoteModelError(ModelErrorKind.CONTENT_BLOCKED, reply.block_reason or "")
                logger.debug(
                    "%s replied: text=%r calls=%s",
                    self.model,
                    reply.text,
                    [call.name for call in reply.function_calls],
                )
                return reply

            if not error.retryable or attempt >= self.max_retries:
                logger.error("Model call failed (%s): %s", error.kind.value, error)
                raise error
            retry_delay = self.RETRY_BASE_DELAY * (2**attempt)  # 0.5s, 1s, 2s...
            logger.info(
                "Rate limited by %s, retrying in %.1f seconds (attempt %d/%d)...",
                self.model,
                retry_delay,
                attempt + 1,
                self.max_retries,
            )
            await asyncio.sleep(retry_delay)

        raise AssertionError("unreachable")  # pragma: no cover

    def classify_error(self, exc: Exception) -> RemoteModelError:
        """Map a provider exception to a :class:`RemoteModelError`."""
        if isinstance(exc, httpx.TimeoutException):
            return RemoteModelError(ModelErrorKind.TIMEOUT, str(exc))
        if isinstance(exc, httpx.TransportError):
            return RemoteModelError(ModelErrorKind.TRANSPORT_FAILURE, str(exc))
        if isinstance(exc, (ValueError, KeyError, TypeError, json.JSONDecodeError)):
            return RemoteModelError(ModelErrorKind.MALFORMED_RESPONSE, str(exc))
        return RemoteModelError(ModelErrorKind.TRANSPORT_FAILURE, str(exc))

    @abstractmethod
    async def _generate(
        self, history: List[Turn], parts: List[Part], tools: List[ToolDeclaration]
    ) -> ModelReply:
        """Perform one provider round trip."""


# ---------------------------------------------------------------------------
# Concrete clients
# ---------------------------------------------------------------------------
def _gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Gemini's Schema type expects upper-case type names."""
    out: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            out[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            out[key] = {name: _gemini_schema(sub) for name, sub in value.items()}
        elif key == "items" and isinstance(value, dict):
            out[key] = _gemini_schema(value)
        elif key == "additionalProperties":
            continue  # not supported by Gemini
        else:
            out[key] = value
    return out


@register_model("gemini")
class GeminiModel(BaseModelClient):
    """Google Gemini client with safety settings and manual function calling."""

    SAFETY_CATEGORIES = (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai  # pylint: disable=import-outside-toplevel

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @staticmethod
    def _to_content(turn: Turn) -> Any:
        from google.genai import types  # pylint: disable=import-outside-toplevel

        parts = []
        for part in turn.parts:
            if part.function_call is not None:
                parts.append(
                    types.Part(
                        function_call=types.FunctionCall(
                            name=part.function_call.name, args=part.function_call.args
                        )
                    )
                )
            elif part.function_response is not None:
                parts.append(
                    types.Part.from_function_response(
                        name=part.function_response.name,
                        response=part.function_response.response,
                    )
                )
            elif part.text is not None:
                parts.append(types.Part(text=part.text))
        return types.Content(role=turn.role, parts=parts)

    def _build_config(self, tools: List[ToolDeclaration]) -> Any:
        from google.genai import types  # pylint: disable=import-outside-toplevel

        declarations = [
            types.FunctionDeclaration(
                name=tool.name,
                description=tool.description,
                parameters=_gemini_schema(tool.json_schema()),
            )
            for tool in tools
        ]
        return types.GenerateContentConfig(
            max_output_tokens=self.max_output_tokens,
            safety_settings=[
                types.SafetySetting(category=category, threshold="BLOCK_MEDIUM_AND_ABOVE")
                for category in self.SAFETY_CATEGORIES
            ],
            tools=[types.Tool(function_declarations=declarations)] if declarations else None,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )

    async def _generate(
        self, history: List[Turn], parts: List[Part], tools: List[ToolDeclaration]
    ) -> ModelReply:
        contents = [self._to_content(turn) for turn in history]
        contents.append(self._to_content(Turn(role="user", parts=parts)))
        response = await self._get_client().aio.models.generate_content(
            model=self.model, contents=contents, config=self._build_config(tools)
        )

        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason:
            return ModelReply(blocked=True, block_reason=str(block_reason))
        candidates = response.candidates or []
        if candidates and str(getattr(candidates[0], "finish_reason", "")).endswith("SAFETY"):
            return ModelReply(blocked=True, block_reason="Response blocked for safety reasons.")

        calls = [
            FunctionCall(name=call.name, args=dict(call.args or {}), id=getattr(call, "id", None))
            for call in (response.function_calls or [])
        ]
        text = ""
        if candidates and candidates[0].content and candidates[0].content.parts:
            text = "".join(p.text for p in candidates[0].content.parts if getattr(p, "text", None))
        return ModelReply(text=text, function_calls=calls)

    def classify_error(self, exc: Exception) -> RemoteModelError:
        from google.genai import errors  # pylint: disable=import-outside-toplevel

        if isinstance(exc, errors.APIError):
            if exc.code == 429:
                return RemoteModelError(ModelErrorKind.RATE_LIMITED, str(exc))
            return RemoteModelError(ModelErrorKind.TRANSPORT_FAILURE, str(exc))
        return super().classify_error(exc)


def _openai_messages(history: List[Turn]) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    for turn in history:
        texts = [p.text for p in turn.parts if p.text]
        calls = [p.function_call for p in turn.parts if p.function_call is not None]
        responses = [p.function_response for p in turn.parts if p.function_response is not None]
        if turn.role == "model":
            message: Dict[str, Any] = {"role": "assistant", "content": "\n".join(texts) or None}
            if calls:
                message["tool_calls"] = [
                    {
                        "id": call.id or f"call_{call.name}",
                        "type": "function",
                        "function": {"name": call.name, "arguments": _dump(call.args)},
                    }
                    for call in calls
                ]
            messages.append(message)
            continue
        for response in responses:
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": response.id or f"call_{response.name}",
                    "content": _dump(response.response),
                }
            )
        if texts:
            messages.append({"role": "user", "content": "\n".join(texts)})
    return messages


@register_model("openai")
class OpenAIModel(BaseModelClient):
    """OpenAI chat-completions client with native tool calling."""

    async def _generate(
        self, history: List[Turn], parts: List[Part], tools: List[ToolDeclaration]
    ) -> ModelReply:
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=self.api_key, max_retries=0)
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": _openai_messages(history + [Turn(role="user", parts=parts)]),
            "max_completion_tokens": self.max_output_tokens,
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.json_schema(),
                    },
                }
                for tool in tools
            ]
        resp = await client.chat.completions.create(**request)

        choice = resp.choices[0]
        if choice.finish_reason == "content_filter":
            return ModelReply(blocked=True, block_reason="content_filter")
        calls = [
            FunctionCall(
                name=tc.function.name, args=json.loads(tc.function.arguments or "{}"), id=tc.id
            )
            for tc in (choice.message.tool_calls or [])
        ]
        return ModelReply(text=choice.message.content or "", function_calls=calls)

    def classify_error(self, exc: Exception) -> RemoteModelError:
        import openai  # pylint: disable=import-outside-toplevel

        if isinstance(exc, openai.RateLimitError):
            return RemoteModelError(ModelErrorKind.RATE_LIMITED, str(exc))
        if isinstance(exc, openai.APITimeoutError):
            return RemoteModelError(ModelErrorKind.TIMEOUT, str(exc))
        if isinstance(exc, openai.APIError):
            return RemoteModelError(ModelErrorKind.TRANSPORT_FAILURE, str(exc))
        return super().classify_error(exc)


def _anthropic_messages(history: List[Turn]) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    for turn in history:
        role = "assistant" if turn.role == "model" else "user"
        blocks: List[Dict[str, Any]] = []
        for part in turn.parts:
            if part.function_call is not None:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": part.function_call.id or f"toolu_{part.function_call.name}",
                        "name": part.function_call.name,
                        "input": part.function_call.args,
                    }
                )
            elif part.function_response is not None:
                blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": part.function_response.id
                        or f"toolu_{part.function_response.name}",
                        "content": _dump(part.function_response.response),
                    }
                )
            elif part.text:
                blocks.append({"type": "text", "text": part.text})
        if not blocks:
            continue
        # Consecutive turns of the same role are merged into one message
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})
    return messages


@register_model("anthropic")
class AnthropicModel(BaseModelClient):
    """Anthropic Claude client with native tool use."""

    async def _generate(
        self, history: List[Turn], parts: List[Part], tools: List[ToolDeclaration]
    ) -> ModelReply:
        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(api_key=self.api_key, max_retries=0)
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_output_tokens,
            "messages": _anthropic_messages(history + [Turn(role="user", parts=parts)]),
        }
        if tools:
            request["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.json_schema(),
                }
                for tool in tools
            ]
        response = await client.messages.create(**request)

        if response.stop_reason == "refusal":
            return ModelReply(blocked=True, block_reason="refusal")
        text_parts: List[str] = []
        calls: List[FunctionCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                calls.append(FunctionCall(name=block.name, args=dict(block.input), id=block.id))
        return ModelReply(text="".join(text_parts), function_calls=calls)

    def classify_error(self, exc: Exception) -> RemoteModelError:
        import anthropic  # pylint: disable=import-outside-toplevel

        if isinstance(exc, anthropic.RateLimitError):
            return RemoteModelError(ModelErrorKind.RATE_LIMITED, str(exc))
        if isinstance(exc, anthropic.APITimeoutError):
            return RemoteModelError(ModelErrorKind.TIMEOUT, str(exc))
        if isinstance(exc, anthropic.APIError):
            return RemoteModelError(ModelErrorKind.TRANSPORT_FAILURE, str(exc))
        return super().classify_error(exc)
