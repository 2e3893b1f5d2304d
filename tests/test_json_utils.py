from reqtest.json_utils import clean_json_text, extract_json


def test_clean_strips_c0_and_c1_controls():
    assert clean_json_text("\x00 {\"a\":\x85 1}\n") == '{"a": 1}'


def test_extract_plain_object():
    assert extract_json('{"a": 1}') == {"a": 1}


def test_extract_fenced_block():
    text = 'Here you go:\n```json\n{"nodes": [], "edges": []}\n```\nAnything else?'
    assert extract_json(text) == {"nodes": [], "edges": []}


def test_extract_fenced_array():
    assert extract_json('```\n[{"id": "TC1"}]\n```') == [{"id": "TC1"}]


def test_extract_object_with_surrounding_prose():
    assert extract_json('Sure! {"a": {"b": [1, 2]}} Hope that helps.') == {"a": {"b": [1, 2]}}


def test_extract_ignores_braces_inside_strings():
    assert extract_json('Result: {"label": "use } carefully", "n": 1} done') == {
        "label": "use } carefully",
        "n": 1,
    }


def test_extract_tolerates_trailing_commas():
    assert extract_json('Output: {"a": [1, 2,], "b": 3,} end') == {"a": [1, 2], "b": 3}


def test_extract_array_before_object():
    assert extract_json('cases: [{"id": "TC1"}, {"id": "TC2"}]') == [{"id": "TC1"}, {"id": "TC2"}]


def test_extract_nothing():
    assert extract_json("no json here") is None
    assert extract_json(None) is None


def test_extract_unbalanced():
    assert extract_json('{"a": [1, 2') is None
