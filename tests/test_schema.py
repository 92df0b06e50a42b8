import pytest

from filmtrust.errors import ValidationInputError
from filmtrust.schema import validate_entity_id, validate_source_entry


def test_valid_entity_id():
    assert validate_entity_id("mv-001") == "mv-001"


@pytest.mark.parametrize("entity_id", [None, "", "   ", " mv-1", "mv-1\n", 42, "x" * 65])
def test_invalid_entity_id(entity_id):
    with pytest.raises(ValidationInputError) as exc_info:
        validate_entity_id(entity_id)
    assert exc_info.value.entity_id == entity_id


def test_valid_source_entry():
    entry = {"id": "tmdb", "priority": 21, "base_confidence": 0.95, "enabled": True,
             "field_coverage": ["cast", "image"]}
    assert validate_source_entry(entry) == []


def test_missing_required_fields():
    errs = validate_source_entry({"name": "TMDB"})
    assert "Missing required field: id" in errs
    assert "Missing required field: priority" in errs
    assert "Missing required field: base_confidence" in errs


def test_bad_types():
    errs = validate_source_entry({"id": "", "priority": True, "base_confidence": "high", "enabled": "yes"})
    assert "Field 'id' must be a non-empty string" in errs
    assert "Field 'priority' must be an integer" in errs
    assert "Field 'base_confidence' must be a number" in errs
    assert "Field 'enabled' must be a boolean if provided" in errs


def test_confidence_range():
    errs = validate_source_entry({"id": "x", "priority": 1, "base_confidence": -0.1})
    assert errs == ["Field 'base_confidence' must be between 0 and 1"]


def test_coverage():
    assert validate_source_entry({"id": "x", "priority": 1, "base_confidence": 0.5,
                                  "field_coverage": "cast"}) == ["Field 'field_coverage' must be a list if provided"]
    errs = validate_source_entry({"id": "x", "priority": 1, "base_confidence": 0.5,
                                  "field_coverage": ["cast", "trivia"]})
    assert errs == ["Unknown field categories: trivia"]
