"""Tests for the action parser cascade."""

from __future__ import annotations

import time

import pytest

from actionflow.orchestration.action_parser import (
    ActionParser,
    decode_action,
    has_action_markup,
    native_actions,
    parse_actions,
    parse_loose,
    parse_raw_tokens,
    parse_structured,
    parse_tagged,
    strip_thinking,
)
from actionflow.orchestration.types import AgentAction, ToolAction, normalize_arguments


# =============================================================================
# Structured Stage
# =============================================================================


class TestStructuredStage:
    def test_fenced_json_block(self):
        text = 'Sure.\n```json\n{"tool": "calculator", "params": {"a": 5, "b": 3}}\n```'

        actions = parse_actions(text)

        assert len(actions) == 1
        action = actions[0]
        assert isinstance(action, ToolAction)
        assert action.name == "calculator"
        assert dict(action.arguments) == {"a": 5, "b": 3}
        assert action.call_id.startswith("parsed_calculator_0_")

    def test_array_of_actions(self):
        text = '[{"name": "search", "arguments": {"q": "x"}}, {"name": "fetch", "arguments": {"url": "u"}}]'

        actions = parse_structured(text)

        assert [action.name for action in actions] == ["search", "fetch"]
        assert actions[0].call_id != actions[1].call_id

    def test_repairs_trailing_commas_and_single_quotes(self):
        text = "```json\n{'tool': 'calculator', 'params': {'a': 1, 'b': 2,},}\n```"

        actions = parse_structured(text)

        assert len(actions) == 1
        assert dict(actions[0].arguments) == {"a": 1, "b": 2}

    def test_smart_quotes_are_normalized(self):
        text = "{“tool”: “calculator”, “params”: {“a”: 1}}"

        actions = parse_actions(text)

        assert len(actions) == 1
        assert actions[0].name == "calculator"

    def test_object_without_argument_field_is_not_an_action(self):
        assert parse_structured('{"name": "Alice", "age": 30}') == []

    def test_agent_object_decodes_to_agent_action(self):
        actions = parse_structured('{"agent": "researcher", "task": "Find the population of Oslo"}')

        assert len(actions) == 1
        assert isinstance(actions[0], AgentAction)
        assert actions[0].agent_name == "researcher"
        assert actions[0].task == "Find the population of Oslo"

    def test_non_map_arguments_are_dropped(self):
        assert parse_structured('{"tool": "calculator", "params": [1, 2]}') == []


# =============================================================================
# Tagged Stage
# =============================================================================


class TestTaggedStage:
    def test_tool_call_block(self):
        text = '<tool_call>\n<name>calculator</name>\n<arguments>{"a": 5, "b": 3}</arguments>\n</tool_call>'

        actions = parse_tagged(text)

        assert len(actions) == 1
        assert actions[0].name == "calculator"
        assert dict(actions[0].arguments) == {"a": 5, "b": 3}

    def test_missing_arguments_default_to_empty_map(self):
        actions = parse_tagged("<tool_call><tool_name>get_time</tool_name></tool_call>")

        assert len(actions) == 1
        assert dict(actions[0].arguments) == {}

    def test_agent_call_block(self):
        text = "<agent_call><name>writer</name><task>Draft a haiku</task></agent_call>"

        actions = parse_tagged(text)

        assert actions == [AgentAction(agent_name="writer", task="Draft a haiku", call_id=actions[0].call_id)]

    def test_agent_call_without_task_is_dropped(self):
        assert parse_tagged("<agent_call><name>writer</name></agent_call>") == []

    def test_block_without_name_tag_is_read_as_json(self):
        text = '<tool_call>{"name": "search", "arguments": {"q": "cats"}}</tool_call>'

        actions = parse_tagged(text)

        assert len(actions) == 1
        assert actions[0].name == "search"

    def test_fullwidth_brackets_are_normalized(self):
        text = "＜tool_call＞<name>ping</name></tool_call>"

        actions = parse_actions(text)

        assert [action.name for action in actions] == ["ping"]

    def test_multiple_blocks_get_distinct_ids(self):
        text = "<tool_call><name>a</name></tool_call><tool_call><name>b</name></tool_call>"

        actions = parse_tagged(text)

        assert [action.name for action in actions] == ["a", "b"]
        assert actions[0].call_id.startswith("parsed_a_0_")
        assert actions[1].call_id.startswith("parsed_b_1_")


# =============================================================================
# Raw Token and Loose Stages
# =============================================================================


class TestRawTokenStage:
    def test_raw_delimiter_form(self):
        text = (
            "<|start|>assistant<|channel|>commentary to=functions.calculator "
            '<|constrain|>json<|message|>{"a": 5, "b": 3}<|call|>'
        )

        actions = parse_raw_tokens(text)

        assert len(actions) == 1
        assert actions[0].name == "calculator"
        assert dict(actions[0].arguments) == {"a": 5, "b": 3}

    def test_prefix_is_optional(self):
        actions = parse_raw_tokens('to=search <|message|>{"q": "x"}<|call|>')

        assert [action.name for action in actions] == ["search"]

    def test_unterminated_payload_yields_nothing(self):
        assert parse_raw_tokens('to=functions.search <|message|>{"q": "x"}') == []


class TestLooseStage:
    def test_tool_params_line(self):
        actions = parse_loose('Tool: weather Params: {"city": "Paris"}')

        assert len(actions) == 1
        assert actions[0].name == "weather"
        assert dict(actions[0].arguments) == {"city": "Paris"}

    def test_requires_json_object(self):
        assert parse_loose("Tool: weather Params: Paris") == []


# =============================================================================
# Bracket Scanning
# =============================================================================


class TestBracketScanning:
    def test_nested_object_inside_unclosed_bracket(self):
        text = 'Calling [ {"tool": "calculator", "params": {"a": 5, "b": 3}} now'

        actions = parse_structured(text)

        assert [action.name for action in actions] == ["calculator"]

    def test_object_after_mismatched_closer(self):
        text = '{ oops ] then {"tool": "search", "params": {"query": "x"}}'

        actions = parse_structured(text)

        assert [action.name for action in actions] == ["search"]

    def test_apostrophe_in_braced_prose_does_not_hide_later_action(self):
        text = '{it\'s a note} and {"tool": "search", "params": {"query": "paris"}}'

        actions = parse_structured(text)

        assert [action.name for action in actions] == ["search"]
        assert dict(actions[0].arguments) == {"query": "paris"}

    @pytest.mark.parametrize(
        "text",
        [
            "{" * 20000,
            "[" * 20000,
            "{[" * 10000 + "]" * 5,
            "Tool: calc Params: {" * 4000,
            "{'" * 10000,
        ],
    )
    def test_unbalanced_input_is_scanned_quickly(self, text):
        started = time.perf_counter()

        actions = ActionParser().parse(text)

        assert actions == []
        assert time.perf_counter() - started < 2.0

    def test_action_after_long_unbalanced_prefix(self):
        text = "{" * 5000 + ' {"tool": "calculator", "params": {"a": 1, "b": 2}}'

        actions = parse_structured(text)

        assert [action.name for action in actions] == ["calculator"]


# =============================================================================
# Cascade Behaviour
# =============================================================================


class TestCascade:
    def test_first_non_empty_stage_wins(self):
        text = (
            '```json\n{"tool": "structured", "params": {}}\n```\n'
            "<tool_call><name>tagged</name></tool_call>"
        )

        actions = parse_actions(text)

        assert [action.name for action in actions] == ["structured"]

    def test_plain_text_yields_no_actions(self):
        assert parse_actions("The answer is 8.") == []

    @pytest.mark.parametrize("text", [None, "", "{", "<tool_call>", "```json\n{broken", "to=<|message|>"])
    def test_parse_is_total(self, text):
        assert parse_actions(text) == []

    def test_failing_stage_falls_through(self):
        def explode(_text: str):
            raise RuntimeError("boom")

        parser = ActionParser(stages=[("explode", explode), ("tagged", parse_tagged)])

        actions = parser.parse("<tool_call><name>ping</name></tool_call>")

        assert [action.name for action in actions] == ["ping"]
        assert parser.stage_names == ("explode", "tagged")


# =============================================================================
# Decoding and Helpers
# =============================================================================


class TestDecodeAction:
    @pytest.mark.parametrize("name_key", ["name", "tool", "tool_name"])
    @pytest.mark.parametrize("argument_key", ["arguments", "params", "parameters"])
    def test_synonyms(self, name_key, argument_key):
        action = decode_action({name_key: "echo", argument_key: {"text": "hi"}})

        assert isinstance(action, ToolAction)
        assert action.name == "echo"
        assert dict(action.arguments) == {"text": "hi"}

    def test_string_arguments_are_decoded(self):
        action = decode_action({"name": "echo", "arguments": '{"text": "hi"}'})

        assert dict(action.arguments) == {"text": "hi"}

    def test_require_arguments(self):
        assert decode_action({"name": "echo"}, require_arguments=True) is None
        assert decode_action({"name": "echo"}) is not None

    def test_native_tool_call_shape(self):
        actions = native_actions(
            [{"id": "call_9", "type": "function", "function": {"name": "echo", "arguments": '{"text": "hi"}'}}]
        )

        assert actions == [ToolAction(name="echo", arguments={"text": "hi"}, call_id="call_9")]

    def test_non_mapping_payload(self):
        assert decode_action(["echo"]) is None


def test_strip_thinking_removes_reasoning_blocks():
    assert strip_thinking("<think>plan things</think>The answer is 8.") == "The answer is 8."
    assert strip_thinking("Answer<think>unterminated") == "Answer"


def test_has_action_markup():
    assert has_action_markup("<tool_call><name>x</name></tool_call>")
    assert has_action_markup('to=x <|message|>{}<|call|>')
    assert not has_action_markup("plain text")


class TestDedupKey:
    def test_case_and_whitespace_are_ignored(self):
        first = ToolAction("Search", {"query": "Capital of  France?", "limit": 3})
        second = ToolAction("search", {"limit": 3, "query": " capital of france? "})

        assert first.dedup_key == second.dedup_key

    @pytest.mark.parametrize(("left", "right"), [("5+3", "5*3"), ("2-1", "2/1"), ("a.b", "ab"), ("x=1", "x<1")])
    def test_operators_keep_arguments_apart(self, left, right):
        assert ToolAction("calc", {"expression": left}).dedup_key != ToolAction("calc", {"expression": right}).dedup_key

    def test_nested_values_are_normalized(self):
        assert normalize_arguments({"items": ["A  b", {"Key": "C"}]}) == '{"items": ["a b", {"Key": "c"}]}'

    def test_agent_tasks_compare_like_tool_arguments(self):
        assert AgentAction("Researcher", "Find  Facts").dedup_key == AgentAction("researcher", "find facts").dedup_key
        assert AgentAction("calc", "5+3").dedup_key != AgentAction("calc", "5*3").dedup_key
