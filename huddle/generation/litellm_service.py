"""Generation service backed by LiteLLM streaming completions."""

import json
import logging
from typing import Any, AsyncIterator, Dict, List

import litellm

from huddle.annotations import SourceCitation
from huddle.exceptions import GenerationError
from huddle.generation.base import (
    DoneFrame,
    GenerationRequest,
    GenerationService,
    GenerationSession,
    SourcesFrame,
    TextFrame,
    ToolCallFrame,
    ToolResultFrame,
)
from huddle.models import get_model_params
from huddle.tools.context import ToolOutcome

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 5

NO_OUTCOME_ERROR = "Tool execution not available: no result was submitted for this call."


def _citations(annotations: Any) -> List[SourceCitation]:
    """URL citations from a chunk's annotations, in either flat or nested form."""
    sources = []
    for annotation in annotations or []:
        if not isinstance(annotation, dict):
            annotation = getattr(annotation, "model_dump", lambda: {})()
        if annotation.get("type") not in (None, "url_citation"):
            continue
        data = annotation.get("url_citation") or annotation
        if not data.get("url"):
            continue
        sources.append(
            SourceCitation(
                url=data["url"],
                title=data.get("title") or "",
                start_index=data.get("start_index"),
                end_index=data.get("end_index"),
            )
        )
    return sources


class LiteLLMSession(GenerationSession):
    """Runs the tool loop: stream, surface tool calls, feed outcomes back, repeat."""

    def __init__(self, request: GenerationRequest, model: str, max_tool_rounds: int, params: Dict[str, Any]):
        self.request = request
        self.model = model
        self.max_tool_rounds = max_tool_rounds
        self.params = params
        self._outcomes: Dict[str, ToolOutcome] = {}
        self._stream = None
        self._frames_gen = None

    async def submit_tool_outcome(self, outcome: ToolOutcome) -> None:
        if outcome.call_id is None:
            raise ValueError("Tool outcome has no call_id")
        self._outcomes[outcome.call_id] = outcome

    def __aiter__(self) -> AsyncIterator[Any]:
        self._frames_gen = self._frames()
        return self._frames_gen

    async def aclose(self) -> None:
        stream, self._stream = self._stream, None
        close = getattr(stream, "aclose", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.debug("Error closing LiteLLM stream: %s", e)
        frames, self._frames_gen = self._frames_gen, None
        if frames is not None:
            await frames.aclose()

    def _build_params(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        extra = {**self.params, **self.request.hints}
        extra.pop("model", None)
        if "web_search_options" in extra:
            # Models without built-in search ignore the option instead of failing
            extra.setdefault("drop_params", True)
        if self.request.tools:
            extra["tools"] = self.request.tools
        return get_model_params(self.model, messages=messages, stream=True, **extra)

    async def _frames(self) -> AsyncIterator[Any]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": self.request.system}]
        messages.extend(turn.model_dump() for turn in self.request.turns)

        for round_num in range(self.max_tool_rounds):
            text_parts: List[str] = []
            calls: Dict[int, Dict[str, str]] = {}
            sources: List[SourceCitation] = []

            try:
                self._stream = await litellm.acompletion(**self._build_params(messages))
                async for chunk in self._stream:
                    if not getattr(chunk, "choices", None):
                        continue
                    delta = chunk.choices[0].delta
                    content = getattr(delta, "content", None)
                    if content:
                        text_parts.append(content)
                        yield TextFrame(text=content)
                    for call in getattr(delta, "tool_calls", None) or []:
                        index = getattr(call, "index", None) or 0
                        entry = calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
                        if getattr(call, "id", None):
                            entry["id"] = call.id
                        function = getattr(call, "function", None)
                        if function is not None:
                            if getattr(function, "name", None):
                                entry["name"] = function.name
                            entry["arguments"] += getattr(function, "arguments", None) or ""
                    sources.extend(_citations(getattr(delta, "annotations", None)))
            except GenerationError:
                raise
            except Exception as e:
                raise GenerationError(f"Generation stream failed: {e}") from e
            finally:
                self._stream = None

            if not calls:
                if sources:
                    yield SourcesFrame(sources=sources)
                break

            ordered = [calls[i] for i in sorted(calls)]
            for position, call in enumerate(ordered):
                call["id"] = call["id"] or f"call_{round_num}_{position}"

            messages.append(
                {
                    "role": "assistant",
                    "content": "".join(text_parts) or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {"name": call["name"], "arguments": call["arguments"] or "{}"},
                        }
                        for call in ordered
                    ],
                }
            )

            for call in ordered:
                try:
                    arguments = json.loads(call["arguments"]) if call["arguments"] else {}
                except json.JSONDecodeError:
                    arguments = {}
                if not isinstance(arguments, dict):
                    arguments = {}

                yield ToolCallFrame(id=call["id"], name=call["name"], arguments=arguments)

                outcome = self._outcomes.pop(call["id"], None)
                if outcome is None:
                    outcome = ToolOutcome(success=False, error=NO_OUTCOME_ERROR, call_id=call["id"])
                yield ToolResultFrame(
                    id=call["id"], name=call["name"], success=outcome.success, result=outcome.result_text()
                )
                messages.append({"role": "tool", "tool_call_id": call["id"], "content": outcome.for_model()})
        else:
            logger.warning("Stopped after %d tool rounds without a final answer", self.max_tool_rounds)

        yield DoneFrame()


class LiteLLMGenerationService(GenerationService):
    """Streams completions through LiteLLM.

    Args:
        model: Model string in provider:model form
        max_tool_rounds: Upper bound on stream/tool/stream iterations per response
        **params: Extra parameters passed to every completion call
    """

    def __init__(self, model: str, max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS, **params: Any):
        self.model = model
        self.max_tool_rounds = max_tool_rounds
        self.params = params

    async def open(self, request: GenerationRequest) -> LiteLLMSession:
        model = request.hints.get("model") or self.model
        return LiteLLMSession(request, model, self.max_tool_rounds, self.params)

    async def complete(self, system: str, user: str, **hints: Any) -> str:
        """Non-streaming completion for short utility prompts."""
        model = hints.pop("model", None) or self.model
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        try:
            response = await litellm.acompletion(**get_model_params(model, messages=messages, **hints))
        except Exception as e:
            raise GenerationError(f"Completion failed: {e}") from e
        return response.choices[0].message.content or ""

