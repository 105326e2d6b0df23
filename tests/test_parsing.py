"""Tests for JSON extraction from model replies."""

from __future__ import annotations

from taskbots.core.parsing import extract_json_array, extract_json_object, strip_think


class TestStripThink:
    def test_removes_blocks(self):
        assert strip_think("<think>hmm</think>Answer") == "Answer"

    def test_removes_unterminated_block(self):
        assert strip_think("Answer<think>still thinking") == "Answer"


class TestExtractObject:
    def test_plain(self):
        assert extract_json_object('{"route": "self"}') == {"route": "self"}

    def test_fenced_with_chatter(self):
        text = 'Sure!\n```json\n{"verdict": "approve", "feedback": "ok"}\n```'
        assert extract_json_object(text)["verdict"] == "approve"

    def test_embedded_after_think(self):
        text = '<think>{"route": "delegate"}</think>I pick {"route": "self", "reason": "x"} done'
        assert extract_json_object(text) == {"route": "self", "reason": "x"}

    def test_garbage(self):
        assert extract_json_object("no json here") is None
        assert extract_json_object(None) is None


class TestExtractArray:
    def test_plain(self):
        assert extract_json_array('[{"title": "a"}]') == [{"title": "a"}]

    def test_wrapped_in_object(self):
        assert extract_json_array('{"subtasks": [{"title": "a"}, {"title": "b"}]}') == [
            {"title": "a"},
            {"title": "b"},
        ]

    def test_fenced(self):
        assert extract_json_array('Plan:\n```\n[1, 2]\n```') == [1, 2]

    def test_garbage(self):
        assert extract_json_array("nothing") is None
