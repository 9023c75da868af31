"""Salvage question records from untrusted oracle output.

Stages run in order and the first one that yields at least one valid record wins:

1. structured: parse the outermost JSON block as-is
2. repaired: strip trailing separators, balance brackets, re-parse
3. object scan: parse each self-contained ``{...}`` that looks like a question
4. prose: rebuild records from numbered questions, lettered options and answer markers

Every candidate is then coerced into a ``QuestionDraft`` with a consistent option
count and correct index. Malformed input only ever reduces the number of records.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from quizloom.domain.models.question import (
    MAX_OPTIONS,
    MIN_OPTIONS,
    PROVENANCE_AI,
    PROVENANCE_PLACEHOLDER,
    PROVENANCE_REPAIRED,
    QuestionDraft,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPLANATION = "No explanation provided."
PADDING_OPTIONS = ("None of the above", "All of the above", "Cannot be determined")

QUESTION_KEYS = ("question", "prompt", "text", "question_text", "questionText", "stem")
OPTION_KEYS = ("options", "choices", "alternatives")
ANSWER_KEYS = ("correctAnswer", "correct_answer", "answer", "answer_key", "correct", "correctIndex", "correct_index")
EXPLANATION_KEYS = ("explanation", "rationale", "reason")
OPTION_TEXT_KEYS = ("text", "label", "option", "value", "content")
OPTION_CORRECT_KEYS = ("isCorrect", "is_correct", "correct")

_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class NormalizerPatterns:
    """Regexes tuned to typical oracle failure modes; swap them per oracle."""

    code_fence: re.Pattern[str] = re.compile(r"```(?:json|JSON)?[ \t]*\n?(.*?)(?:```|\Z)", re.DOTALL)
    fence_line: re.Pattern[str] = re.compile(r"^\s*```.*$", re.MULTILINE)
    trailing_separator: re.Pattern[str] = re.compile(r",(\s*[}\]])")
    prose_question: re.Pattern[str] = re.compile(
        r"^\s*(?:Q(?:uestion)?\s*)?(\d{1,3})\s*[.):]\s*(\S.*)$", re.IGNORECASE
    )
    prose_option: re.Pattern[str] = re.compile(r"^\s*(?:\(([A-Ea-e])\)|([A-Ea-e])[.)])\s*(\S.*)$")
    prose_answer: re.Pattern[str] = re.compile(
        r"^\s*(?:correct\s+answer|answer|correct)\s*[:\-]\s*(\S.*)$", re.IGNORECASE
    )
    prose_explanation: re.Pattern[str] = re.compile(r"^\s*explanation\s*[:\-]\s*(\S.*)$", re.IGNORECASE)
    letter_answer: re.Pattern[str] = re.compile(
        r"^\s*(?:option\s+)?\(?([A-Ea-e])\)?(?:[.):]|\s|$)", re.IGNORECASE
    )
    option_prefix: re.Pattern[str] = re.compile(r"^\s*(?:\([A-Ea-e]\)|[A-Ea-e][.)])\s+")


DEFAULT_PATTERNS = NormalizerPatterns()


class ResponseNormalizer:
    def __init__(self, patterns: NormalizerPatterns = DEFAULT_PATTERNS) -> None:
        self.patterns = patterns
        self._stages: list[tuple[str, Callable[[str], list[Any] | None], str]] = [
            ("structured", self._parse_structured, PROVENANCE_AI),
            ("repaired", self._parse_repaired, PROVENANCE_REPAIRED),
            ("object_scan", self._scan_objects, PROVENANCE_REPAIRED),
        ]

    def normalize(self, raw: str | None) -> list[QuestionDraft]:
        if not raw or not raw.strip():
            return []
        structured_text = self._strip_fences(raw)

        for name, stage, provenance in self._stages:
            candidates = stage(structured_text)
            if not candidates:
                continue
            drafts = self._normalize_candidates(candidates, provenance)
            if drafts:
                logger.debug("Normalizer stage %s produced %d records", name, len(drafts))
                return drafts

        prose_text = self.patterns.fence_line.sub("", raw)
        candidates = self._parse_prose(prose_text)
        if candidates:
            drafts = self._normalize_candidates(candidates, PROVENANCE_REPAIRED)
            logger.debug("Normalizer stage prose produced %d records", len(drafts))
            return drafts
        return []

    # -- stages ---------------------------------------------------------------

    def _parse_structured(self, text: str) -> list[Any] | None:
        data = _try_json(text.strip())
        if data is None:
            block = _outermost_block(text)
            if block is None:
                return None
            data = _try_json(block)
        return _collect_candidates(data)

    def _parse_repaired(self, text: str) -> list[Any] | None:
        start = _first_opener(text)
        if start is None:
            return None
        fragment = self.patterns.trailing_separator.sub(r"\1", text[start:].strip())

        data = _try_json(_balance_brackets(fragment))
        if data is None:
            truncated = _truncate_after_last_object(fragment)
            if truncated is not None:
                truncated = self.patterns.trailing_separator.sub(r"\1", truncated)
                data = _try_json(_balance_brackets(truncated))
        return _collect_candidates(data)

    def _scan_objects(self, text: str) -> list[Any] | None:
        found: list[Any] = []
        index = 0
        while True:
            start = text.find("{", index)
            if start < 0:
                break
            end = _matching_close(text, start)
            if end is None:
                break
            snippet = self.patterns.trailing_separator.sub(r"\1", text[start : end + 1])
            data = _try_json(snippet)
            if isinstance(data, dict) and _has_question_key(data):
                found.append(data)
                index = end + 1
            else:
                index = start + 1
        return found or None

    def _parse_prose(self, text: str) -> list[Any] | None:
        p = self.patterns
        blocks: list[dict[str, Any]] = []
        current: dict[str, Any] | None = None
        field: str | None = None

        for line in text.splitlines():
            if not line.strip():
                continue
            option = p.prose_option.match(line)
            answer = p.prose_answer.match(line)
            explanation = p.prose_explanation.match(line)
            question = p.prose_question.match(line)

            if answer and current is not None:
                current["answer"] = answer.group(1).strip()
                field = None
            elif explanation and current is not None:
                current["explanation"] = explanation.group(1).strip()
                field = "explanation"
            elif option and current is not None and "answer" not in current:
                letter = (option.group(1) or option.group(2)).lower()
                current["options"].append(option.group(3).strip())
                current["letters"].append(letter)
                field = "option"
            elif question:
                current = {"question": question.group(2).strip(), "options": [], "letters": []}
                blocks.append(current)
                field = "question"
            elif current is not None and field == "question" and not current["options"]:
                current["question"] = f"{current['question']} {line.strip()}"
            elif current is not None and field == "explanation":
                current["explanation"] = f"{current['explanation']} {line.strip()}"

        candidates = []
        for block in blocks:
            block.pop("letters", None)
            if len(block["options"]) >= 2:
                candidates.append(block)
        return candidates or None

    # -- candidate coercion ----------------------------------------------------

    def _normalize_candidates(self, candidates: list[Any], provenance: str) -> list[QuestionDraft]:
        drafts: list[QuestionDraft] = []
        for item in candidates:
            draft = self._normalize_candidate(item, provenance)
            if draft is not None:
                drafts.append(draft)
        return drafts

    def _normalize_candidate(self, item: Any, provenance: str) -> QuestionDraft | None:
        if not isinstance(item, dict):
            return None
        prompt = _first_text(item, QUESTION_KEYS)
        if not prompt:
            return None

        options, flagged_index = self._extract_options(item)
        if len(options) < 2:
            return None

        repaired = False
        correct_index = self._resolve_answer(_first_present(item, ANSWER_KEYS), options)
        if correct_index is None:
            correct_index = flagged_index
        if correct_index is None or not 0 <= correct_index < len(options):
            logger.debug("Clamping unresolved answer to option 0 for %r", prompt[:60])
            correct_index = 0
            repaired = True

        if len(options) < MIN_OPTIONS:
            for filler in PADDING_OPTIONS:
                if len(options) >= MIN_OPTIONS:
                    break
                if filler not in options:
                    options.append(filler)
            while len(options) < MIN_OPTIONS:
                options.append(f"Option {chr(ord('A') + len(options))}")
            repaired = True
        elif len(options) > MAX_OPTIONS:
            options = options[:MAX_OPTIONS]
            if correct_index >= MAX_OPTIONS:
                correct_index = 0
            repaired = True

        explanation = _first_text(item, EXPLANATION_KEYS) or DEFAULT_EXPLANATION

        if PROVENANCE_PLACEHOLDER in (item.get("source"), item.get("provenance")):
            tag = PROVENANCE_PLACEHOLDER
        elif repaired:
            tag = PROVENANCE_REPAIRED
        else:
            tag = provenance

        return QuestionDraft(
            prompt=prompt,
            options=options,
            correct_index=correct_index,
            explanation=explanation,
            provenance=tag,
        )

    def _extract_options(self, item: dict[str, Any]) -> tuple[list[str], int | None]:
        raw = _first_present(item, OPTION_KEYS)
        values: list[Any]
        if isinstance(raw, dict):
            values = [raw[key] for key in sorted(raw, key=lambda k: str(k).lower())]
        elif isinstance(raw, list):
            values = raw
        else:
            return [], None

        options: list[str] = []
        flagged: int | None = None
        for value in values:
            if isinstance(value, dict):
                text = _first_text(value, OPTION_TEXT_KEYS)
                is_correct = any(value.get(key) is True for key in OPTION_CORRECT_KEYS)
            elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
                text = str(value).strip()
                is_correct = False
            else:
                continue
            text = self.patterns.option_prefix.sub("", text or "").strip()
            if not text:
                continue
            if is_correct and flagged is None:
                flagged = len(options)
            options.append(text)
        return options, flagged

    def _resolve_answer(self, raw: Any, options: list[str]) -> int | None:
        if raw is None or isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float):
            return int(raw) if raw.is_integer() else None
        if not isinstance(raw, str):
            return None

        value = raw.strip()
        if not value:
            return None

        # Option text wins over a numeric reading: options may themselves be numbers.
        folded = value.casefold()
        for index, option in enumerate(options):
            if option.casefold() == folded:
                return index

        if value.lstrip("-").isdigit():
            return int(value)

        letter = self.patterns.letter_answer.match(value)
        if letter:
            return ord(letter.group(1).lower()) - ord("a")

        stripped = self.patterns.option_prefix.sub("", value).strip().casefold()
        for index, option in enumerate(options):
            if option.casefold() == stripped:
                return index
        return None

    def _strip_fences(self, raw: str) -> str:
        match = self.patterns.code_fence.search(raw)
        if match and match.group(1).strip():
            return match.group(1)
        return raw


def _try_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None


def _collect_candidates(data: Any) -> list[Any] | None:
    if isinstance(data, list):
        return data or None
    if not isinstance(data, dict):
        return None
    questions = data.get("questions")
    if isinstance(questions, list):
        return questions or None
    if _has_question_key(data):
        return [data]
    for value in data.values():
        if isinstance(value, list) and any(isinstance(v, dict) for v in value):
            return value
    return None


def _has_question_key(data: dict[str, Any]) -> bool:
    return any(isinstance(data.get(key), str) and data.get(key).strip() for key in QUESTION_KEYS)


def _first_present(item: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in item and item[key] is not None:
            return item[key]
    return None


def _first_text(item: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _first_opener(text: str) -> int | None:
    positions = [pos for pos in (text.find("{"), text.find("[")) if pos >= 0]
    return min(positions) if positions else None


def _outermost_block(text: str) -> str | None:
    start = _first_opener(text)
    if start is None:
        return None
    end = text.rfind(_CLOSERS[text[start]])
    if end <= start:
        return None
    return text[start : end + 1]


def _matching_close(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def _balance_brackets(text: str) -> str:
    """Drop stray closers, close a dangling string, then append the missing closers."""
    out: list[str] = []
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack[-1] != ch:
                continue
            stack.pop()
        out.append(ch)

    result = "".join(out)
    if in_string:
        if escaped:
            result = result[:-1]
        result += '"'
    result = result.rstrip()
    while result.endswith(","):
        result = result[:-1].rstrip()
    return result + "".join(reversed(stack))


def _truncate_after_last_object(text: str) -> str | None:
    last_end: int | None = None
    depth = 0
    in_string = False
    escaped = False
    for index, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if ch == "}" and depth >= 1:
                last_end = index
    if last_end is None:
        return None
    return text[: last_end + 1]
