"""Parse structured answers out of model output.

The model is asked for a JSON object with `answer`, `suggestion_chips`
and `escalation_offered`. Anything that does not parse falls back to
the raw text as the answer.
"""

import json
import logging
import re
from typing import Any

from grounded_chat.chat.models import ParsedAnswer

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*")
_LEADING_FENCE_RE = re.compile(r"^```(?:json)?\s*")
_ANSWER_KEY_RE = re.compile(r'"answer"\s*:\s*"')


def strip_code_fences(text: str) -> str:
    """Remove markdown code fence markers."""
    return _FENCE_RE.sub("", text).strip()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def parse_model_response(raw: str, max_chips: int = 3) -> ParsedAnswer:
    """Extract answer, chips and escalation flag from raw model output.

    Args:
        raw: Raw model text, optionally wrapped in code fences
        max_chips: Maximum number of suggestion chips kept

    Returns:
        ParsedAnswer; on malformed output the raw text becomes the answer
        with no chips and no escalation. Truncated JSON keeps whatever
        part of the `answer` string was already written.
    """
    try:
        # strict=False accepts literal newlines inside strings
        parsed = json.loads(strip_code_fences(raw), strict=False)
    except json.JSONDecodeError as e:
        logger.debug(f"Model output is not JSON, using fallback answer: {e}")
        return ParsedAnswer(answer=recover_answer(raw))

    if not isinstance(parsed, dict):
        return ParsedAnswer(answer=raw)

    answer = parsed.get("answer")
    if not isinstance(answer, str) or not answer.strip():
        answer = raw

    chips = parsed.get("suggestion_chips")
    if isinstance(chips, list):
        chips = [c.strip() for c in chips if isinstance(c, str) and c.strip()][: max(max_chips, 0)]
    else:
        chips = []

    return ParsedAnswer(
        answer=answer,
        suggestion_chips=chips,
        escalation_offered=_as_bool(parsed.get("escalation_offered")),
    )


def recover_answer(raw: str) -> str:
    """Answer text of output that failed to parse as JSON.

    Runs the streaming extractor over the whole text so the result is
    exactly what a stream of the same output has already shown.
    """
    recovered = AnswerStreamExtractor().feed(raw)
    return recovered if recovered.strip() else raw


class AnswerStreamExtractor:
    """Incrementally extract the `answer` string from streamed model output.

    Feed raw fragments with `feed()`; each call returns the newly decoded
    answer text. When the output does not start with a JSON object the
    raw text is passed through unchanged. `finish()` returns whatever is
    still missing for the streamed text to equal the parsed final answer.
    """

    _DETECT = "detect"
    _SEEK = "seek"
    _STRING = "string"
    _DONE = "done"
    _RAW = "raw"

    def __init__(self):
        self._state = self._DETECT
        self._buffer = ""
        self._escape = ""
        self._pending_high = ""
        self.emitted = ""

    def feed(self, fragment: str) -> str:
        out = self._process(fragment)
        self.emitted += out
        return out

    def finish(self, final_answer: str) -> str:
        """Return the tail needed to make the emitted text equal `final_answer`."""
        if final_answer.startswith(self.emitted):
            tail = final_answer[len(self.emitted):]
        else:
            logger.debug("Streamed text diverged from parsed answer; no tail emitted")
            tail = ""
        self.emitted += tail
        self._state = self._DONE
        return tail

    def _process(self, fragment: str) -> str:
        if self._state == self._RAW:
            return fragment
        if self._state == self._DONE:
            return ""
        if self._state == self._STRING:
            return self._decode(fragment)

        self._buffer += fragment
        if self._state == self._DETECT:
            return self._detect()
        return self._seek()

    def _detect(self) -> str:
        stripped = self._buffer.lstrip()
        if not stripped:
            return ""
        if stripped.startswith("`"):
            if len(stripped) < 3:
                return ""
            if not stripped.startswith("```"):
                return self._to_raw()
            match = _LEADING_FENCE_RE.match(stripped)
            body = stripped[match.end():]
            # Wait until the fence header is complete
            if not body or body.strip() == "" or "json".startswith(body):
                return ""
            stripped = body
        if not stripped.startswith("{"):
            return self._to_raw()
        self._state = self._SEEK
        self._buffer = stripped
        return self._seek()

    def _to_raw(self) -> str:
        self._state = self._RAW
        out, self._buffer = self._buffer, ""
        return out

    def _seek(self) -> str:
        match = _ANSWER_KEY_RE.search(self._buffer)
        if not match:
            return ""
        rest = self._buffer[match.end():]
        self._buffer = ""
        self._state = self._STRING
        return self._decode(rest)

    def _decode(self, text: str) -> str:
        out = []
        for ch in text:
            if self._state != self._STRING:
                break
            if self._escape:
                self._escape += ch
                if self._escape_complete():
                    out.append(self._flush_escape())
            elif ch == "\\":
                self._escape = ch
            elif ch == '"':
                out.append(self._drop_pending())
                self._state = self._DONE
            else:
                out.append(self._drop_pending())
                out.append(ch)
        return "".join(out)

    def _escape_complete(self) -> bool:
        if len(self._escape) < 2:
            return False
        if self._escape[1] == "u":
            return len(self._escape) == 6
        return True

    def _flush_escape(self) -> str:
        escape, self._escape = self._escape, ""
        if self._pending_high:
            escape, self._pending_high = self._pending_high + escape, ""
        try:
            decoded = json.loads(f'"{escape}"')
        except json.JSONDecodeError:
            return escape
        if len(decoded) == 1 and 0xD800 <= ord(decoded) <= 0xDBFF:
            # High surrogate; wait for the low half
            self._pending_high = escape
            return ""
        return decoded

    def _drop_pending(self) -> str:
        if not self._pending_high:
            return ""
        pending, self._pending_high = self._pending_high, ""
        return json.loads(f'"{pending}"')
