"""
Claim Resolution Engine - Response Validator

Extracts a JSON object from a model reply and validates it into a typed
result. Nothing here fills in a missing field: malformed replies fail closed.
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ...models.analysis import PMBrainStatus, validation_messages
from ..errors import InvalidClassificationError, MalformedResponseError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` wrapper if present."""
    return _FENCE.sub("", text.strip()).strip()


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the first JSON object in a model reply.

    Handles bare JSON, fenced JSON, and JSON preceded or followed by prose.
    """
    if not text or not text.strip():
        raise MalformedResponseError("Model returned an empty response")

    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = None

    if data is None:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise MalformedResponseError(
                "Model response contains no JSON object",
                details={"preview": cleaned[:200]},
            )
        try:
            data = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Model response is not valid JSON: {e.msg}",
                details={"preview": cleaned[:200]},
            ) from e

    if not isinstance(data, dict):
        raise MalformedResponseError("Model response JSON is not an object")
    return data


def parse_model(data: Dict[str, Any], model: Type[ModelT], what: str) -> ModelT:
    """Validate a parsed dict into `model`, failing with MalformedResponseError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Model {what} response does not match the expected shape",
            details={"errors": validation_messages(e)},
        ) from e


def validate_pm_brain_status(value: Any) -> PMBrainStatus:
    """Accept only the four disposition values. Never coerced, never retried."""
    if isinstance(value, str):
        try:
            return PMBrainStatus(value)
        except ValueError:
            pass
    allowed = ", ".join(s.value for s in PMBrainStatus)
    raise InvalidClassificationError(
        f"Invalid classification status {value!r}; expected one of {allowed}",
        details={"status": value, "allowed": [s.value for s in PMBrainStatus]},
    )
