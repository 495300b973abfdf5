"""Provider-agnostic decoding of streamed LLM responses.

Every supported provider answers with ``data:`` records separated by blank
lines. What a record *means* differs per provider family, so decoding is
split in two:

- ``StreamNormalizer`` owns the response: it reads the body chunk by chunk,
  buffers partial records, and turns the outcome into ``Fragment``,
  ``Error`` and ``Done`` events.
- A ``RecordDecoder`` (one per family, picked once per request) pulls the
  text out of a single record payload.

Usage::

    async for event in StreamNormalizer("anthropic", response):
        if isinstance(event, Fragment):
            print(event.text, end="")

``Error`` and ``Done`` are always the last event. The response is closed when
the stream finishes, fails, or is closed early with ``aclose()``.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from pagechat.services.providers.base import ProviderFamily, get_provider_spec

logger = logging.getLogger(__name__)


# --- Events ---
@dataclass(frozen=True)
class Fragment:
    text: str


@dataclass(frozen=True)
class Error:
    message: str


@dataclass(frozen=True)
class Done:
    pass


NormalizedEvent = Union[Fragment, Error, Done]


# --- Record decoding ---
def _dig(obj: Any, *path: Union[str, int]) -> Any:
    """Follow ``path`` through nested dicts/lists, returning None on any miss."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
            obj = obj[key]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)
    return obj


def split_records(buffer: str) -> tuple[list[str], str]:
    """Split the complete records off ``buffer`` and return them with the rest.

    LF, CRLF and lone CR line endings are all accepted. A CR at the very end
    is held back: it may be the first half of a CRLF cut by a chunk boundary.
    """
    held = ""
    if buffer.endswith("\r"):
        buffer, held = buffer[:-1], "\r"
    buffer = buffer.replace("\r\n", "\n").replace("\r", "\n")
    *records, rest = buffer.split("\n\n")
    return records, rest + held


def parse_record(record: str) -> Optional[str]:
    """Return the data payload of one SSE record, or None if it carries none.

    Multiple ``data:`` lines are joined with newlines. ``event:``/``id:``/
    ``retry:`` fields and ``:`` comments (keep-alives) are ignored.
    """
    data_lines = []
    for line in record.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)
    if not data_lines:
        return None
    return "\n".join(data_lines)


class RecordDecoder(ABC):
    family: ProviderFamily

    def is_terminator(self, payload: str) -> bool:
        return False

    def decode(self, payload: str) -> Optional[str]:
        """Text carried by one payload. Raises ``ValueError`` on malformed JSON."""
        text = self.extract(json.loads(payload))
        return text if isinstance(text, str) else None

    @abstractmethod
    def extract(self, event: Any) -> Any:
        ...


class OpenAIDecoder(RecordDecoder):
    family = ProviderFamily.OPENAI

    def is_terminator(self, payload: str) -> bool:
        return payload.strip() == "[DONE]"

    def extract(self, event: Any) -> Any:
        # Role-only and usage records have no content
        return _dig(event, "choices", 0, "delta", "content")


class AnthropicDecoder(RecordDecoder):
    family = ProviderFamily.ANTHROPIC

    def extract(self, event: Any) -> Any:
        if _dig(event, "type") != "content_block_delta":
            return None
        return _dig(event, "delta", "text")


class GeminiDecoder(RecordDecoder):
    family = ProviderFamily.GEMINI

    def extract(self, event: Any) -> Any:
        return _dig(event, "candidates", 0, "content", "parts", 0, "text")


DECODERS: dict[ProviderFamily, type[RecordDecoder]] = {
    ProviderFamily.OPENAI: OpenAIDecoder,
    ProviderFamily.ANTHROPIC: AnthropicDecoder,
    ProviderFamily.GEMINI: GeminiDecoder,
}


def decoder_for(provider_id: str) -> RecordDecoder:
    return DECODERS[get_provider_spec(provider_id).family]()


# --- Tolerance policy ---
@dataclass
class DecodeTolerance:
    """What to do with records whose payload is not valid JSON.

    Malformed records are skipped and counted. After ``limit`` of them in a
    row (no valid record in between) the stream is failed; a ``limit`` of
    ``None`` or anything below 1 never fails it.
    """

    limit: Optional[int] = 5
    swallowed: int = 0
    consecutive: int = 0

    def record_failure(self, payload: str, exc: ValueError) -> bool:
        """Count one malformed record. Returns True when the stream should fail."""
        self.swallowed += 1
        self.consecutive += 1
        logger.debug("Skipping malformed record (%s): %.80r", exc, payload)
        return self.limit is not None and self.limit > 0 and self.consecutive >= self.limit

    def record_success(self) -> None:
        self.consecutive = 0


def _error_detail(body: bytes) -> Optional[str]:
    """Best-effort extraction of ``error.message`` from a provider error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if isinstance(data, list) and data:
        data = data[0]
    message = _dig(data, "error", "message")
    return message if isinstance(message, str) else None


class StreamNormalizer:
    """Normalized event stream over one provider response.

    Owns the response: iterate it once with ``async for``, and the response is
    closed when the stream ends, fails, or ``aclose()`` is called.
    """

    def __init__(
        self,
        provider_id: str,
        response: httpx.Response,
        *,
        failure_limit: Optional[int] = 5,
    ):
        self.provider_id = provider_id
        self.tolerance = DecodeTolerance(limit=failure_limit)
        self.fragment_count = 0
        self._decoder = decoder_for(provider_id)
        self._response = response
        self._events: Optional[AsyncGenerator[NormalizedEvent, None]] = None

    def __aiter__(self) -> AsyncGenerator[NormalizedEvent, None]:
        if self._events is not None:
            raise RuntimeError("A normalized stream can only be iterated once")
        self._events = self._run()
        return self._events

    async def aclose(self) -> None:
        """Stop the stream and release the response, whether or not it started."""
        if self._events is not None:
            await self._events.aclose()
        await self._response.aclose()

    async def _run(self) -> AsyncGenerator[NormalizedEvent, None]:
        response = self._response
        try:
            if response.is_error:
                yield Error(await self._describe_failure(response))
                return

            buffer = ""
            try:
                async for text in response.aiter_text():
                    records, buffer = split_records(buffer + text)
                    for record in records:
                        event = self._decode_record(record)
                        if event is None:
                            continue
                        yield event
                        if not isinstance(event, Fragment):
                            return
            except httpx.RequestError as exc:
                logger.warning(
                    "%s stream interrupted after %d fragments: %r",
                    self.provider_id, self.fragment_count, exc,
                )
                reason = str(exc) or type(exc).__name__
                yield Error(f"{self.provider_id} stream interrupted: {reason}")
                return

            # A last record without its blank-line terminator is kept only if
            # it decodes; anything else means the body was cut mid-record.
            if buffer.strip():
                event = self._decode_record(buffer.replace("\r", "\n"), final=True)
                if event is not None:
                    yield event
                    if not isinstance(event, Fragment):
                        return

            self._log_complete()
            yield Done()
        finally:
            await response.aclose()

    def _log_complete(self) -> None:
        logger.info(
            "%s response complete (%d fragments)", self.provider_id, self.fragment_count
        )

    def _decode_record(self, record: str, final: bool = False) -> Optional[NormalizedEvent]:
        payload = parse_record(record)
        if payload is None:
            return None
        if self._decoder.is_terminator(payload):
            self._log_complete()
            return Done()

        try:
            text = self._decoder.decode(payload)
        except ValueError as exc:
            if final:
                logger.warning(
                    "%s stream ended mid-record after %d fragments: %.80r",
                    self.provider_id, self.fragment_count, payload,
                )
                return Error(f"{self.provider_id} stream ended mid-record")
            if self.tolerance.record_failure(payload, exc):
                logger.warning(
                    "%s stream failed: %d malformed records in a row",
                    self.provider_id, self.tolerance.consecutive,
                )
                return Error(
                    f"{self.provider_id} stream could not be decoded "
                    f"({self.tolerance.consecutive} malformed records in a row)"
                )
            return None

        self.tolerance.record_success()
        if not text:
            return None
        self.fragment_count += 1
        return Fragment(text)

    async def _describe_failure(self, response: httpx.Response) -> str:
        message = f"{self.provider_id} server error: {response.status_code}"
        try:
            detail = _error_detail(await response.aread())
        except httpx.RequestError:
            detail = None
        logger.warning("%s returned %d: %s", self.provider_id, response.status_code, detail)
        if detail:
            message += f" ({detail})"
        return message
