from bulkload.core.mapping import MappingTables, augment_fields, resolve_code, resolve_mapping
from bulkload.core.records import build_raw_record


def _raw(**fields):
    return build_raw_record(fields)


def test_override_keyed_by_original_wins_over_default():
    tables = MappingTables.build(default_data_source="D", data_source_overrides={"A": "X"})
    assert resolve_mapping(_raw(DATA_SOURCE="A"), tables).data_source == "X"


def test_null_key_override_wins_over_default_for_missing_value():
    tables = MappingTables.build(default_data_source="D", data_source_overrides={None: "Y"})
    assert resolve_mapping(_raw(), tables).data_source == "Y"


def test_default_applies_without_override():
    tables = MappingTables.build(default_data_source="D")
    assert resolve_mapping(_raw(), tables).data_source == "D"


def test_default_does_not_replace_present_original():
    tables = MappingTables.build(default_data_source="D", default_entity_type="PERSON")
    resolved = resolve_mapping(_raw(DATA_SOURCE="A", ENTITY_TYPE="ORG"), tables)
    assert (resolved.data_source, resolved.entity_type) == ("A", "ORG")


def test_original_unchanged_without_tables():
    resolved = resolve_mapping(_raw(DATA_SOURCE="A"), MappingTables())
    assert resolved.data_source == "A"
    assert resolved.entity_type is None
    assert resolved.is_complete is False


def test_override_keys_match_case_insensitively():
    tables = MappingTables.build(data_source_overrides={"crm": "CUSTOMERS"})
    assert resolve_mapping(_raw(DATA_SOURCE=" CRM "), tables).data_source == "CUSTOMERS"


def test_blank_override_key_means_missing_value():
    tables = MappingTables.build(entity_type_overrides={"": "PERSON"})
    assert tables.entity_types == {None: "PERSON"}
    assert resolve_mapping(_raw(ENTITY_TYPE="  "), tables).entity_type == "PERSON"


def test_blank_override_values_are_ignored():
    tables = MappingTables.build(default_data_source="D", data_source_overrides={None: " ", "A": ""})
    assert tables.data_sources == {None: "D"}


def test_code_literally_named_null_is_not_the_missing_key():
    tables = MappingTables.build(data_source_overrides={"null": "NAMED_NULL", None: "MISSING"})
    assert resolve_code("null", tables.data_sources) == "NAMED_NULL"
    assert resolve_code(None, tables.data_sources) == "MISSING"


def test_entity_type_and_data_source_resolve_independently():
    tables = MappingTables.build(default_entity_type="PERSON")
    resolved = resolve_mapping(_raw(RECORD_ID="1"), tables)
    assert resolved.data_source is None
    assert resolved.entity_type == "PERSON"
    assert not resolved.is_complete


def test_augment_fields_replaces_codes_and_stamps_source_id():
    raw = _raw(RECORD_ID="1", data_source="crm", NAME="Ann", SOURCE_ID="old")
    tables = MappingTables.build(data_source_overrides={"CRM": "CUSTOMERS"}, default_entity_type="PERSON")
    fields = augment_fields(resolve_mapping(raw, tables), load_id="L1")

    assert fields == {
        "RECORD_ID": "1",
        "NAME": "Ann",
        "DATA_SOURCE": "CUSTOMERS",
        "ENTITY_TYPE": "PERSON",
        "SOURCE_ID": "L1",
    }


def test_augment_fields_keeps_source_id_without_load_id():
    raw = _raw(DATA_SOURCE="A", ENTITY_TYPE="B", SOURCE_ID="kept")
    fields = augment_fields(resolve_mapping(raw, MappingTables()))
    assert fields["SOURCE_ID"] == "kept"
