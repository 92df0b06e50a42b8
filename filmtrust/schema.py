from typing import Any, Dict, List

from .errors import ValidationInputError

REQUIRED_SOURCE_FIELDS = ["id", "priority", "base_confidence"]
KNOWN_CATEGORIES = {"cast", "metadata", "image", "review", "external_ids"}
MAX_ENTITY_ID_LENGTH = 64


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def validate_entity_id(entity_id: Any) -> str:
    """
    Return the entity id if it is usable, else raise ValidationInputError.

    Ids are opaque non-empty strings without surrounding whitespace.
    """
    if not _is_non_empty_str(entity_id):
        raise ValidationInputError(f"Entity id must be a non-empty string, got {entity_id!r}", entity_id)
    if entity_id != entity_id.strip():
        raise ValidationInputError(f"Entity id has surrounding whitespace: {entity_id!r}", entity_id)
    if len(entity_id) > MAX_ENTITY_ID_LENGTH:
        raise ValidationInputError(f"Entity id longer than {MAX_ENTITY_ID_LENGTH} chars", entity_id)
    return entity_id


def validate_source_entry(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    for f in REQUIRED_SOURCE_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")

    if "id" in data and not _is_non_empty_str(data["id"]):
        errors.append("Field 'id' must be a non-empty string")

    priority = data.get("priority")
    if "priority" in data and (isinstance(priority, bool) or not isinstance(priority, int)):
        errors.append("Field 'priority' must be an integer")

    confidence = data.get("base_confidence")
    if "base_confidence" in data:
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            errors.append("Field 'base_confidence' must be a number")
        elif not 0.0 <= confidence <= 1.0:
            errors.append("Field 'base_confidence' must be between 0 and 1")

    if "enabled" in data and not isinstance(data["enabled"], bool):
        errors.append("Field 'enabled' must be a boolean if provided")

    coverage = data.get("field_coverage")
    if coverage is not None:
        if not isinstance(coverage, list):
            errors.append("Field 'field_coverage' must be a list if provided")
        else:
            unknown = sorted(set(map(str, coverage)) - KNOWN_CATEGORIES)
            if unknown:
                errors.append(f"Unknown field categories: {', '.join(unknown)}")

    return errors
