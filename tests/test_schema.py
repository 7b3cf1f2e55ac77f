from agentic.schema import (
    TYPE_ARRAY,
    TYPE_BOOLEAN,
    TYPE_OBJECT,
    TYPE_STRING,
    eval_schema,
    plan_schema,
)


def test_plan_schema_has_required_fields():
    schema = plan_schema()
    assert schema["type"] == TYPE_OBJECT
    for field in ("intent", "max_retries", "plan"):
        assert field in schema["properties"]
        assert field in schema["required"]


def test_plan_schema_root_type_enum():
    type_prop = plan_schema()["properties"]["plan"]["properties"]["type"]
    assert set(type_prop["enum"]) == {"direct", "sequential", "loop", "parallel"}


def test_plan_schema_child_type_enum_excludes_direct():
    child = plan_schema()["properties"]["plan"]["properties"]["steps"]["items"]
    assert set(child["properties"]["type"]["enum"]) == {"step", "sequential", "loop", "parallel"}


def test_plan_schema_nesting_stops_after_three_levels():
    node = plan_schema()["properties"]["plan"]
    depth = 0
    while "steps" in node["properties"]:
        steps = node["properties"]["steps"]
        assert steps["type"] == TYPE_ARRAY
        node = steps["items"]
        depth += 1
    assert depth == 3
    assert node["required"] == ["type"]


def test_plan_node_tools_are_string_array():
    tools = plan_schema()["properties"]["plan"]["properties"]["tools"]
    assert tools["type"] == TYPE_ARRAY
    assert tools["items"] == {"type": TYPE_STRING}


def test_exit_condition_requires_key_and_pattern():
    exit_condition = plan_schema()["properties"]["plan"]["properties"]["exit_condition"]
    assert exit_condition["type"] == TYPE_OBJECT
    assert exit_condition["required"] == ["output_key", "pattern"]


def test_eval_schema_has_fields():
    schema = eval_schema()
    assert schema["type"] == TYPE_OBJECT
    assert schema["properties"]["satisfied"]["type"] == TYPE_BOOLEAN
    assert schema["properties"]["feedback"]["type"] == TYPE_STRING
    assert set(schema["required"]) == {"satisfied", "feedback"}


def test_schemas_are_fresh_each_call():
    first = plan_schema()
    first["required"].append("extra")
    assert plan_schema()["required"] == ["intent", "max_retries", "plan"]