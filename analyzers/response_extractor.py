"""
Recover a trade recommendation from free-form LLM text.

Candidate regions are tried in order: the first ```json (or untagged) fenced
block, then the span from the first '{' to the last '}'. The first candidate
that parses as JSON is validated; malformed JSON is never repaired. A reply
holding two separate top-level objects yields an unparseable brace span.
"""
import json
import re
from typing import List, Optional

from pydantic import ValidationError

from core.errors import ExtractionError, ExtractionFailure
from utils.pydantic_models import Recommendation

# One opening/closing fence pair per match: language tag, then the body
_FENCE_RE = re.compile(r"```([\w-]*)[ \t]*\r?\n?(.*?)```", re.DOTALL)


def fenced_block(text: str) -> Optional[str]:
    """Body of the first fenced block tagged ``json`` or left untagged."""
    for m in _FENCE_RE.finditer(text):
        if m.group(1).lower() not in ("", "json"):
            continue
        body = m.group(2).strip()
        return body or None
    return None


def brace_span(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def candidate_regions(text: str) -> List[str]:
    candidates = []
    for candidate in (fenced_block(text), brace_span(text)):
        if candidate and candidate not in candidates:
            candidates.append(candidate)
    return candidates


def _describe_validation_error(e: ValidationError) -> str:
    problems = []
    for err in e.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        if err.get("type") == "missing":
            problems.append(f"missing required key '{field}'")
        else:
            problems.append(f"invalid value for '{field}': {err.get('msg')}")
    return "; ".join(problems)


def extract_recommendation(raw_text: str) -> Recommendation:
    """Return the validated recommendation or raise ``ExtractionError``."""
    text = raw_text or ""
    candidates = candidate_regions(text)
    if not candidates:
        raise ExtractionError(
            ExtractionFailure.NO_JSON_REGION,
            "No JSON object found in the AI response",
        )

    parsed = None
    last_error = None
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            break
        except json.JSONDecodeError as e:
            last_error = e
    else:
        raise ExtractionError(
            ExtractionFailure.INVALID_JSON,
            f"AI response contains malformed JSON: {last_error}",
            details={"candidates": len(candidates)},
        )

    if not isinstance(parsed, dict):
        raise ExtractionError(
            ExtractionFailure.SCHEMA_MISMATCH,
            f"Expected a JSON object in the AI response, got {type(parsed).__name__}",
        )

    try:
        return Recommendation.model_validate(parsed)
    except ValidationError as e:
        raise ExtractionError(
            ExtractionFailure.SCHEMA_MISMATCH,
            f"AI response JSON does not match the recommendation schema: {_describe_validation_error(e)}",
            details={"keys": sorted(parsed)},
        ) from e
