import json

import pytest

from bookmark_organizer.errors import ParseError
from bookmark_organizer.utils.response_parser import (
    CategoryList,
    CategoryMap,
    as_category_list,
    as_category_map,
    parse_response,
)

VALUES = [
    {"Tech": [0, 1]},
    {"技术": [2], "娱乐": [0, 1]},
    ["Tools", "Entertainment"],
    {"Nested": {"inner": [1, 2]}, "Empty": []},
    [],
]


class TestParseResponse:
    @pytest.mark.parametrize("value", VALUES)
    def test_fenced_json(self, value):
        text = f"```json\n{json.dumps(value, ensure_ascii=False)}\n```"
        assert parse_response(text) == value

    @pytest.mark.parametrize("value", VALUES)
    def test_untagged_fence(self, value):
        assert parse_response(f"```\n{json.dumps(value)}\n```") == value

    @pytest.mark.parametrize("value", VALUES)
    def test_surrounding_noise(self, value):
        text = f"Here is the result: {json.dumps(value)} Hope this helps."
        assert parse_response(text) == value

    def test_object_before_array_wins(self):
        assert parse_response('Result {"A": [0]} and [1]') == {"A": [0]}

    def test_array_before_object_wins(self):
        assert parse_response('Ranking: ["A", "B"]') == ["A", "B"]

    @pytest.mark.parametrize("text", ["no json here", "", None, "{ broken", "}{"])
    def test_missing_json_raises(self, text):
        with pytest.raises(ParseError):
            parse_response(text)

    def test_trailing_comma_is_not_repaired(self):
        with pytest.raises(ParseError):
            parse_response('{"A": [0, 1],}')

    def test_code_is_never_evaluated(self):
        with pytest.raises(ParseError):
            parse_response("{'A': [0]}")


class TestCategoryShapes:
    def test_category_map_keeps_integer_indices(self):
        result = as_category_map({"Tech": [0, "1", 2.5, True, 3], "News": [4]})
        assert result == CategoryMap({"Tech": [0, 3], "News": [4]})

    def test_category_map_drops_non_list_values(self):
        assert as_category_map({"Tech": 3, "News": [1]}) == CategoryMap({"News": [1]})

    def test_category_map_rejects_array(self):
        with pytest.raises(ParseError):
            as_category_map(["Tech"])

    def test_category_list_keeps_strings(self):
        assert as_category_list([" Tech ", 3, "", "News"]) == CategoryList(["Tech", "News"])

    def test_category_list_rejects_object(self):
        with pytest.raises(ParseError):
            as_category_list({"Tech": [0]})
