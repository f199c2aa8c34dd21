from bulkload.core.records import (
    MalformedRecordError,
    build_raw_record,
    code_key,
    malformed_record,
    normalize_code,
)


def test_normalize_code_trims_and_blanks_to_none():
    assert normalize_code("  CRM ") == "CRM"
    assert normalize_code("   ") is None
    assert normalize_code(None) is None
    assert normalize_code(42) == "42"
    assert normalize_code({"nested": 1}) is None
    assert normalize_code(True) is None


def test_code_key_is_case_insensitive():
    assert code_key(" crm ") == "CRM"
    assert code_key("") is None


def test_build_raw_record_reads_well_known_fields():
    raw = build_raw_record(
        {"RECORD_ID": " 1001 ", "DATA_SOURCE": "CRM", "NAME": "Ann"},
        line_number=2,
    )
    assert raw.record_id == "1001"
    assert raw.original_data_source == "CRM"
    assert raw.original_entity_type is None
    assert raw.fields["NAME"] == "Ann"
    assert raw.line_number == 2
    assert raw.is_malformed is False


def test_build_raw_record_matches_field_names_case_insensitively():
    raw = build_raw_record({"data_source": "crm", "Entity_Type": "PERSON", "record_id": 7})
    assert raw.original_data_source == "crm"
    assert raw.original_entity_type == "PERSON"
    assert raw.record_id == "7"


def test_malformed_record_keeps_recoverable_fields():
    raw = malformed_record("Expected 3 cells but found 2", line_number=4, fields={"DATA_SOURCE": "CRM"})
    assert raw.is_malformed
    assert isinstance(raw.error, MalformedRecordError)
    assert raw.error.line_number == 4
    assert raw.error.reason == "Expected 3 cells but found 2"
    assert "line 4" in str(raw.error)
    assert raw.original_data_source == "CRM"
    assert raw.record_id is None
