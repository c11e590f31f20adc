"""
Dependency Health - Response Assertions.

============================================================
PURPOSE
============================================================
Declarative checks applied to a probe response after the
expected status code matched.

Assertions are data, so dependency configuration can live in
YAML and be round-tripped:

    {"type": "json_path_equals", "path": "result", "value": "0x89"}
    {"type": "json_path", "path": "bitcoin.usd", "op": "gt", "operand": 0}
    {"type": "all_of", "assertions": [...]}

CustomAssertion wraps an arbitrary predicate for cases the
declarative variants cannot express. It is not serializable.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


_MISSING = object()


def resolve_path(data: Any, path: str) -> Any:
    """
    Resolve a dotted path inside parsed JSON.

    Integer segments index into lists ("Answer.0.data").
    Returns the module sentinel when any segment is missing.
    """
    current = data
    if not path:
        return current

    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(segment)
            except ValueError:
                return _MISSING
            if index >= len(current) or index < -len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


# ============================================================
# ASSERTION BASE
# ============================================================

class ResponseAssertion(ABC):
    """Base class for all response assertions."""

    type_name: str = ""

    @abstractmethod
    def check(self, status: int, body: Any) -> bool:
        """Return True when the response satisfies the assertion."""
        pass

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description used in failure messages."""
        pass

    def to_dict(self) -> Dict[str, Any]:
        raise ConfigurationError(
            f"{self.__class__.__name__} cannot be serialized",
            config_key="assertion",
        )


class StatusEquals(ResponseAssertion):
    """Passes when the HTTP status equals the configured code."""

    type_name = "status_equals"

    def __init__(self, status: int):
        self.status = int(status)

    def check(self, status: int, body: Any) -> bool:
        return status == self.status

    def describe(self) -> str:
        return f"status == {self.status}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type_name, "status": self.status}


class JsonPathEquals(ResponseAssertion):
    """Passes when the value at a JSON path equals the expected value."""

    type_name = "json_path_equals"

    def __init__(self, path: str, value: Any):
        self.path = path
        self.value = value

    def check(self, status: int, body: Any) -> bool:
        actual = resolve_path(body, self.path)
        if actual is _MISSING:
            return False
        return actual == self.value

    def describe(self) -> str:
        return f"{self.path or '<body>'} == {self.value!r}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type_name, "path": self.path, "value": self.value}


class JsonPathPredicate(ResponseAssertion):
    """
    Passes when a comparison on the value at a JSON path holds.

    Supported operators:
    - exists, nonempty
    - eq, ne
    - gt, ge, lt, le (numeric; numeric strings are coerced)
    - startswith, contains
    """

    type_name = "json_path"

    OPERATORS = (
        "exists", "nonempty", "eq", "ne",
        "gt", "ge", "lt", "le",
        "startswith", "contains",
    )

    def __init__(self, path: str, op: str, operand: Any = None):
        if op not in self.OPERATORS:
            raise ConfigurationError(
                f"Unknown assertion operator: {op}",
                config_key="op",
                expected_value=", ".join(self.OPERATORS),
                actual_value=str(op),
            )
        self.path = path
        self.op = op
        self.operand = operand

    def check(self, status: int, body: Any) -> bool:
        actual = resolve_path(body, self.path)
        if actual is _MISSING:
            return False

        op = self.op
        if op == "exists":
            return actual is not None
        if op == "nonempty":
            return actual is not None and (
                not hasattr(actual, "__len__") or len(actual) > 0
            )
        if op == "eq":
            return actual == self.operand
        if op == "ne":
            return actual != self.operand
        if op in ("gt", "ge", "lt", "le"):
            left = _as_number(actual)
            right = _as_number(self.operand)
            if left is None or right is None:
                return False
            return {
                "gt": left > right,
                "ge": left >= right,
                "lt": left < right,
                "le": left <= right,
            }[op]
        if op == "startswith":
            return isinstance(actual, str) and actual.startswith(str(self.operand))
        if op == "contains":
            try:
                return self.operand in actual
            except TypeError:
                return False
        return False

    def describe(self) -> str:
        if self.op in ("exists", "nonempty"):
            return f"{self.path or '<body>'} {self.op}"
        return f"{self.path or '<body>'} {self.op} {self.operand!r}"

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type_name, "path": self.path, "op": self.op}
        if self.op not in ("exists", "nonempty"):
            data["operand"] = self.operand
        return data


class AllOf(ResponseAssertion):
    """Conjunction of assertions."""

    type_name = "all_of"

    def __init__(self, assertions: Iterable[ResponseAssertion]):
        self.assertions: Tuple[ResponseAssertion, ...] = tuple(assertions)

    def check(self, status: int, body: Any) -> bool:
        return all(a.check(status, body) for a in self.assertions)

    def first_failure(self, status: int, body: Any) -> Optional[ResponseAssertion]:
        for assertion in self.assertions:
            if not assertion.check(status, body):
                return assertion
        return None

    def describe(self) -> str:
        return " and ".join(a.describe() for a in self.assertions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type_name,
            "assertions": [a.to_dict() for a in self.assertions],
        }


class CustomAssertion(ResponseAssertion):
    """Escape hatch: arbitrary predicate over the parsed body."""

    type_name = "custom"

    def __init__(self, func: Callable[[Any], bool], description: str = "custom predicate"):
        self.func = func
        self.description = description

    def check(self, status: int, body: Any) -> bool:
        return bool(self.func(body))

    def describe(self) -> str:
        return self.description


# ============================================================
# CONFIG LOADING
# ============================================================

def assertion_from_dict(data: Dict[str, Any]) -> ResponseAssertion:
    """Build an assertion from its dictionary form."""
    if not isinstance(data, dict) or "type" not in data:
        raise ConfigurationError(
            "Assertion must be a mapping with a 'type' key",
            config_key="assertion",
            actual_value=repr(data),
        )

    kind = data["type"]
    if kind == StatusEquals.type_name:
        return StatusEquals(data["status"])
    if kind == JsonPathEquals.type_name:
        return JsonPathEquals(data.get("path", ""), data.get("value"))
    if kind == JsonPathPredicate.type_name:
        return JsonPathPredicate(
            data.get("path", ""),
            data.get("op", "exists"),
            data.get("operand"),
        )
    if kind == AllOf.type_name:
        return AllOf(assertion_from_dict(d) for d in data.get("assertions", []))

    raise ConfigurationError(
        f"Unknown assertion type: {kind}",
        config_key="assertion.type",
        actual_value=str(kind),
    )


def evaluate_assertion(
    assertion: ResponseAssertion,
    status: int,
    body: Any,
) -> Optional[str]:
    """
    Run an assertion and return an error string, or None on success.

    An assertion that raises counts as a failed validation.
    """
    try:
        if isinstance(assertion, AllOf):
            failed = assertion.first_failure(status, body)
            if failed is None:
                return None
            return f"Response validation failed: {failed.describe()}"
        if assertion.check(status, body):
            return None
        return f"Response validation failed: {assertion.describe()}"
    except Exception as e:
        logger.debug(f"Assertion {assertion.describe()} raised: {e}")
        return f"Response validation error: {e}"


__all__ = [
    "ResponseAssertion",
    "StatusEquals",
    "JsonPathEquals",
    "JsonPathPredicate",
    "AllOf",
    "CustomAssertion",
    "assertion_from_dict",
    "evaluate_assertion",
    "resolve_path",
]
