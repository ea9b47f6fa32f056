import time

from qa_agents.parsing import extract_json_array, extract_json_object, scan_balanced, strip_code_fences
from qa_agents.planner import parse_actions


def test_array_wrapped_in_prose():
    text = 'Sure! Here are the steps:\n[{"actionType": "TAP", "sequence": 1}]\nLet me know if you need more.'
    assert extract_json_array(text) == [{"actionType": "TAP", "sequence": 1}]


def test_plan_between_prose_lines_yields_both_records():
    text = (
        "Here is the plan:\n"
        '[ {"actionType": "TAP", "elementDescription": "Menu", "sequence": 1},'
        ' {"actionType": "BACK", "sequence": 2} ]\n'
        "Done."
    )
    records = extract_json_array(text)
    assert len(records) == 2
    assert [r["actionType"] for r in records] == ["TAP", "BACK"]


def test_array_inside_code_fence():
    text = '```json\n[{"actionType": "BACK"}]\n```'
    assert extract_json_array(text) == [{"actionType": "BACK"}]


def test_brackets_inside_strings_do_not_confuse_scanner():
    text = '[{"elementDescription": "Button labelled ] or [", "value": "a\\"]b"}]'
    assert extract_json_array(text) == [{"elementDescription": "Button labelled ] or [", "value": 'a"]b'}]


def test_skips_non_json_sibling_before_payload():
    text = "Steps [see below]: [1, 2]"
    assert extract_json_array(text) == [1, 2]


def test_malformed_payload_does_not_leak_nested_array():
    text = (
        '[{"actionType": "TAP", "elementDescription": "Pay", '
        '"value": [{"actionType": "CLOSE_APP", "value": "com.bank"}]},]'
    )
    assert extract_json_array(text) is None
    assert parse_actions(text) == []


def test_malformed_object_does_not_leak_nested_object():
    text = '{"matchedElement": {"suggestedLocators": {"structural": "//a"}},}'
    assert extract_json_object(text) is None


def test_truncated_payload_yields_none():
    assert extract_json_array('[{"actionType": "TAP"') is None
    assert extract_json_array('Plan: [{"actionType": "TAP"}, [1, 2]') is None
    assert extract_json_array("") is None
    assert extract_json_array(None) is None


def test_long_unbalanced_input_is_rejected_quickly():
    started = time.perf_counter()
    assert extract_json_array("[" * 200000) is None
    assert extract_json_array('["x", ' * 50000) is None
    assert time.perf_counter() - started < 5.0


def test_object_extraction_skips_nested_prose():
    text = 'Analysis: {"screenDescription": "Login", "matchedElement": {"text": "}"}} done'
    assert extract_json_object(text) == {"screenDescription": "Login", "matchedElement": {"text": "}"}}


def test_scan_balanced_rejects_mismatched_closer():
    assert scan_balanced("[1, 2}", 0) is None
    assert scan_balanced("x[1]", 1) == "[1]"


def test_strip_code_fences_leaves_plain_text():
    assert strip_code_fences("  [1]  ") == "[1]"
