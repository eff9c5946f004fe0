"""Partial profile updates shared by the device store and the server."""
from typing import Dict, Any

# wire name -> column name
PROFILE_FIELDS: Dict[str, str] = {
    "name": "name",
    "age": "age",
    "gender": "gender",
    "location": "location",
    "language": "language",
    "voiceProfileCreated": "voice_profile_created",
    "voice_profile_created": "voice_profile_created",
    "phone": "phone",
    "email": "email",
}


TRUE_WORDS = {"true", "1", "yes"}
FALSE_WORDS = {"false", "0", "no"}


def _as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    raise ValueError("voiceProfileCreated must be true or false")


def normalize_profile_changes(changes: Any) -> Dict[str, Any]:
    """
    Map a wire-format partial profile onto column names.

    Raises ValueError for a non-mapping payload or unknown fields so that a
    malformed sync item fails on its own instead of being half-applied.
    """
    if not isinstance(changes, dict):
        raise ValueError("Profile update payload must be an object")
    unknown = sorted(k for k in changes if k not in PROFILE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown profile field(s): {', '.join(unknown)}")
    normalized = {PROFILE_FIELDS[k]: v for k, v in changes.items()}
    if "voice_profile_created" in normalized:
        normalized["voice_profile_created"] = _as_flag(normalized["voice_profile_created"])
    if "name" in normalized and not str(normalized["name"] or "").strip():
        raise ValueError("Profile name cannot be empty")
    return normalized


def profile_to_wire(obj) -> Dict[str, Any]:
    return {
        "name": obj.name,
        "age": obj.age,
        "gender": obj.gender,
        "location": obj.location,
        "language": obj.language,
        "voiceProfileCreated": bool(obj.voice_profile_created),
        "phone": obj.phone,
        "email": obj.email,
    }
