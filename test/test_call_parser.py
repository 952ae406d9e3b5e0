"""
Capability call extraction from noisy backend output.
"""

import pytest

from kpc_assistant.core.capability import CapabilityCall
from kpc_assistant.modules.router.call_parser import (
    extract_candidate,
    extract_fenced,
    parse_capability_call,
    strip_think_blocks,
)


class TestCallParserExtraction:
    """
    Tests that a call is found regardless of the noise around it.
    """

    def test_json_fence(self, catalog):
        """
        Test that a ```json fenced object is parsed.
        """
        raw = '```json\n{"name": "search", "arguments": {"query": "表单"}}\n```'
        call = parse_capability_call(raw, catalog)
        assert call is not None
        assert call.name == "search"
        assert call.arguments == {"query": "表单"}

    def test_think_prose_and_fence(self, catalog):
        """
        Test that think blocks and surrounding prose are ignored.
        """
        raw = (
            "<think>The user wants Button props. Maybe {\"name\": \"get_stats\"}?</think>\n"
            "好的，我来调用工具：\n"
            "```json\n"
            '{"name": "get_component", "arguments": {"component": "Button"}}\n'
            "```\n"
            "以上。"
        )
        call = parse_capability_call(raw, catalog)
        assert call.name == "get_component"
        assert call.arguments == {"component": "Button"}

    def test_bare_object_in_prose(self, catalog):
        """
        Test that an unfenced object inside prose is parsed.
        """
        raw = 'Sure: {"name": "get_stats", "arguments": {}} hope that helps'
        call = parse_capability_call(raw, catalog)
        assert call.name == "get_stats"
        assert call.arguments == {}

    def test_untagged_fence(self, catalog):
        """
        Test that a fence without a language tag is used.
        """
        raw = '```\n{"name": "get_stats", "arguments": {}}\n```'
        assert parse_capability_call(raw, catalog).name == "get_stats"

    def test_json_fence_preferred_over_other_fence(self, catalog):
        """
        Test that the json-tagged fence wins over an earlier untagged one.
        """
        raw = (
            '```\n{"name": "get_stats"}\n```\n'
            '```json\n{"name": "search", "arguments": {"query": "弹窗"}}\n```'
        )
        call = parse_capability_call(raw, catalog)
        assert call.name == "search"

    def test_missing_arguments_defaults_to_empty(self, catalog):
        """
        Test that a call without arguments gets an empty mapping.
        """
        call = parse_capability_call('{"name": "get_stats"}', catalog)
        assert call.arguments == {}

    def test_remote_name_is_normalised(self, catalog):
        """
        Test that the server-side tool name maps to the logical name.
        """
        call = parse_capability_call('{"name": "get_kpc_component", "arguments": {"component": "Form"}}', catalog)
        assert call.name == "get_component"


class TestCallParserRejection:
    """
    Tests that anything ambiguous or invalid becomes "no call".
    """

    @pytest.mark.parametrize("raw", ["NONE", "none", " null ", "", "   "])
    def test_no_call_tokens(self, catalog, raw):
        """
        Test that the no-call token and empty output return None.
        """
        assert parse_capability_call(raw, catalog) is None

    def test_invalid_json(self, catalog):
        """
        Test that a malformed candidate returns None.
        """
        assert parse_capability_call('{"name": "search", "arguments": {query: 表单}}', catalog) is None

    def test_unknown_name(self, catalog):
        """
        Test that an unknown capability name returns None.
        """
        assert parse_capability_call('{"name": "delete_everything", "arguments": {}}', catalog) is None

    def test_multiple_objects(self, catalog):
        """
        Test that two separate objects resolve to no call.
        """
        raw = '{"name": "get_stats", "arguments": {}} or {"name": "search", "arguments": {}}'
        assert parse_capability_call(raw, catalog) is None

    def test_missing_closing_brace(self, catalog):
        """
        Test that a truncated object returns None.
        """
        assert parse_capability_call('{"name": "get_stats", "arguments": {', catalog) is None

    def test_call_only_inside_think_block(self, catalog):
        """
        Test that a call inside the think block is never used.
        """
        raw = '<think>{"name": "get_stats", "arguments": {}}</think>NONE'
        assert parse_capability_call(raw, catalog) is None

    @pytest.mark.parametrize("raw", ["[1, 2]", '"get_stats"', "42"])
    def test_non_object_json(self, catalog, raw):
        """
        Test that JSON with no object in it is rejected.
        """
        assert parse_capability_call(raw, catalog) is None

    def test_object_inside_array(self, catalog):
        """
        Test that the outermost braces are cut out of an array wrapper.
        """
        call = parse_capability_call('[{"name": "get_stats"}]', catalog)
        assert call == CapabilityCall("get_stats", {})

    def test_arguments_not_object(self, catalog):
        """
        Test that non-object arguments are rejected.
        """
        assert parse_capability_call('{"name": "get_stats", "arguments": "x"}', catalog) is None

    def test_non_string_input(self, catalog):
        """
        Test that non-text input returns None instead of raising.
        """
        assert parse_capability_call(None, catalog) is None
        assert parse_capability_call(42, catalog) is None


class TestCallParserHelpers:
    """
    Tests for the individual extraction steps.
    """

    def test_unclosed_think_drops_rest(self):
        """
        Test that an unclosed think block removes everything after it.
        """
        assert strip_think_blocks('answer <think>{"name": "x"}') == "answer "

    def test_multiple_think_blocks(self):
        """
        Test that every paired think block is removed.
        """
        assert strip_think_blocks("<think>a</think>b<think>c</think>d") == "bd"

    def test_extract_fenced_without_fence(self):
        """
        Test that text without a fence is returned unchanged.
        """
        assert extract_fenced("plain") == "plain"

    def test_extract_candidate_is_greedy(self):
        """
        Test that the candidate runs from the first { to the last }.
        """
        assert extract_candidate('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'
