"""Response schemas constraining structured plan and evaluation output."""

from __future__ import annotations

from typing import Any, Optional

TYPE_OBJECT = "OBJECT"
TYPE_STRING = "STRING"
TYPE_INTEGER = "INTEGER"
TYPE_BOOLEAN = "BOOLEAN"
TYPE_ARRAY = "ARRAY"

Schema = dict[str, Any]

_ROOT_TYPES = ["direct", "sequential", "loop", "parallel"]
_CHILD_TYPES = ["step", "sequential", "loop", "parallel"]


def _field(type_: str, description: str, **extra: Any) -> Schema:
    return {"type": type_, "description": description, **extra}


def _exit_condition_schema() -> Schema:
    return {
        "type": TYPE_OBJECT,
        "description": "Optional early-exit condition for a loop node.",
        "properties": {
            "output_key": _field(
                TYPE_STRING, "The output key to inspect for the exit pattern."
            ),
            "pattern": _field(
                TYPE_STRING,
                "Substring match; loop exits when the value at output_key "
                "contains this substring.",
            ),
        },
        "required": ["output_key", "pattern"],
    }


def _plan_node_schema(at_root: bool, steps_item: Optional[Schema]) -> Schema:
    """Schema for one plan node; steps are present only when steps_item is given."""
    properties: Schema = {
        "type": _field(
            TYPE_STRING,
            "The type of plan node.",
            enum=list(_ROOT_TYPES if at_root else _CHILD_TYPES),
        ),
        "response": _field(
            TYPE_STRING, "The direct response text (used when type=direct)."
        ),
        "role": _field(TYPE_STRING, "The agent role to invoke (used when type=step)."),
        "instruction": _field(
            TYPE_STRING, "The instruction for the agent (used when type=step)."
        ),
        "tools": _field(
            TYPE_ARRAY,
            "Tool names available to the agent (used when type=step).",
            items={"type": TYPE_STRING},
        ),
        "output_key": _field(
            TYPE_STRING,
            "Key under which the agent's output is stored (used when type=step).",
        ),
        "max_iterations": _field(
            TYPE_INTEGER, "Maximum number of loop iterations (used when type=loop)."
        ),
        "exit_condition": _exit_condition_schema(),
    }
    if steps_item is not None:
        properties["steps"] = _field(
            TYPE_ARRAY,
            "Child nodes (used when type=sequential, loop, or parallel).",
            items=steps_item,
        )
    return {"type": TYPE_OBJECT, "properties": properties, "required": ["type"]}


def plan_schema() -> Schema:
    """Schema of the plan phase response: intent, max_retries and a plan tree.

    The plan tree nests three levels below the root; only the root accepts
    the "direct" node type.
    """
    child3 = _plan_node_schema(False, None)
    child2 = _plan_node_schema(False, child3)
    child1 = _plan_node_schema(False, child2)
    root = _plan_node_schema(True, child1)
    return {
        "type": TYPE_OBJECT,
        "description": "Structured plan output from the Root LLM plan phase.",
        "properties": {
            "intent": _field(
                TYPE_STRING,
                "The intent of the plan \u2014 what the user wants to achieve.",
            ),
            "max_retries": _field(
                TYPE_INTEGER, "Maximum number of retries if evaluation fails."
            ),
            "plan": root,
        },
        "required": ["intent", "max_retries", "plan"],
    }


def eval_schema() -> Schema:
    """Schema of the evaluate phase response: satisfied and feedback."""
    return {
        "type": TYPE_OBJECT,
        "description": "Structured evaluation output from the Root LLM evaluate phase.",
        "properties": {
            "satisfied": _field(
                TYPE_BOOLEAN, "Whether the agent's response satisfies the user's intent."
            ),
            "feedback": _field(TYPE_STRING, "Feedback explaining the evaluation result."),
        },
        "required": ["satisfied", "feedback"],
    }