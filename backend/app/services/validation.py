"""Answer validation rules for guided-form steps."""
import math
import re
from typing import Any, Callable, Dict, Iterable, List

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list, tuple, set)):
        return bool(value)
    return True


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    text = _as_text(value).strip()
    # float() accepts digit separators such as "1_000"
    if "_" in text:
        return False
    try:
        parsed = float(text)
    except ValueError:
        return False
    return math.isfinite(parsed)


def is_email(value: Any) -> bool:
    return bool(EMAIL_PATTERN.match(_as_text(value).strip()))


RULES: Dict[str, Callable[[Any], bool]] = {
    "required": is_present,
    "number": is_number,
    "email": is_email,
}


def check(rules: Iterable[str], value: Any) -> List[str]:
    """Return the names of the rules ``value`` breaks, in rule order."""
    violations = []
    for rule in rules:
        predicate = RULES.get(rule)
        if predicate is None:
            raise ValueError(f"Unknown validation rule '{rule}'")
        if not predicate(value):
            violations.append(rule)
    return violations
