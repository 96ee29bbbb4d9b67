from pipeliner.messages import (
    Column,
    ExtractResponse,
    LoadMetadata,
    Partition,
    PartitionsResponse,
    RuntimeParams,
    SchemaRequirement,
    SchemaRequirementResponse,
    SchemaResponse,
    SinkConfig,
    SourceConfig,
    SourceDescriptor,
    ValidationResult,
)


def test_configs_default_to_empty_json_text():
    assert SourceConfig().config_json == ""
    assert SinkConfig().config_json == ""
    assert SourceConfig('{"a": 1}') == SourceConfig(config_json='{"a": 1}')


def test_runtime_params_are_not_shared():
    first = RuntimeParams()
    second = RuntimeParams()
    first.params["partition_key"] = "p1"
    assert second.params == {}


def test_flexible_requirement_is_zero():
    assert SchemaRequirement(0) is SchemaRequirement.FLEXIBLE
    assert SchemaRequirementResponse().requirement is SchemaRequirement.FLEXIBLE
    assert SchemaRequirementResponse().fixed_schema == []


def test_extract_response_defaults():
    resp = ExtractResponse()
    assert resp.batch is None
    assert resp.watermark == ""
    assert ExtractResponse(watermark="2026-03-25T23:59:59Z").watermark == "2026-03-25T23:59:59Z"


def test_load_metadata_defaults():
    meta = LoadMetadata()
    assert meta.config is None
    assert meta.schema is None


def test_schema_and_partitions_hold_items():
    schema = SchemaResponse(columns=[Column("name", "string"), Column("amount", "string")])
    assert [c.name for c in schema.columns] == ["name", "amount"]
    parts = PartitionsResponse([Partition({"file": "a.csv"})])
    assert parts.partitions[0].params == {"file": "a.csv"}
    assert SchemaResponse().columns == []


def test_descriptor_and_validation_equality():
    assert SourceDescriptor("mock-source", "0.1.0") == SourceDescriptor(name="mock-source", version="0.1.0")
    assert ValidationResult(valid=True) == ValidationResult(True, [])