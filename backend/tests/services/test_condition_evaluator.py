"""条件评估 + 字段取值：纯函数，不需要数据库"""

import pytest

from app.services.recipe_engine import ABSENT, evaluate, evaluate_all, evaluate_condition, get_field_value


ORDER = {
    "id": 1001,
    "total_price": "250.00",
    "email": "Jane@Example.com",
    "tags": "vip, wholesale",
    "default_address": {"country_code": "AU"},
    "line_items": [
        {"sku": "SKU-1", "vendor": "Acme", "quantity": 2},
        {"sku": "SKU-2", "vendor": "Globex", "quantity": 1},
    ],
    "note": "",
}


def _cond(field, operator, value=None, logical="AND"):
    return {"field": field, "operator": operator, "value": value, "logicalOperator": logical}


# 方法 1：路径取值（点号 / 下标 / 通配 / 列表隐式展开）
def test_field_accessor_paths():
    assert get_field_value(ORDER, "total_price") == "250.00"
    assert get_field_value(ORDER, "$.default_address.country_code") == "AU"
    assert get_field_value(ORDER, "line_items[1].sku") == "SKU-2"
    assert get_field_value(ORDER, "line_items[*].vendor") == ["Acme", "Globex"]
    assert get_field_value(ORDER, "line_items.sku") == ["SKU-1", "SKU-2"]
    assert get_field_value(ORDER, "line_items[5].sku") is ABSENT
    assert get_field_value(ORDER, "missing.deeper") is ABSENT
    assert get_field_value(ORDER, "line_items[") is ABSENT


def test_empty_condition_list_matches():
    assert evaluate(ORDER, []).matches is True
    assert evaluate(ORDER, None).matches is True
    assert evaluate_all(ORDER, [], "OR").matches is True


@pytest.mark.parametrize("operator,value,expected", [
    ("greater_than", 100, True),
    (">", "300", False),
    ("less_than", "300.5", True),
    ("greater_than", "abc", False),
    ("equals", "250", True),
])
def test_numeric_comparisons(operator, value, expected):
    assert evaluate_condition(_cond("total_price", operator, value), ORDER).result is expected


def test_non_numeric_field_never_satisfies_numeric_operator():
    assert evaluate_condition(_cond("email", "greater_than", 0), ORDER).result is False
    assert evaluate_condition(_cond("email", "less_than", 0), ORDER).result is False


def test_string_operators_ignore_case():
    assert evaluate_condition(_cond("email", "equals", "jane@example.com"), ORDER).result is True
    assert evaluate_condition(_cond("email", "contains", "EXAMPLE"), ORDER).result is True
    assert evaluate_condition(_cond("email", "starts_with", "jane"), ORDER).result is True
    assert evaluate_condition(_cond("email", "ends_with", ".COM"), ORDER).result is True


# 字段不存在：除 not_exists / is_empty 之外都不命中，包括反向运算符
@pytest.mark.parametrize("operator,expected", [
    ("equals", False),
    ("not_equals", False),
    ("not_contains", False),
    ("not_in", False),
    ("greater_than", False),
    ("exists", False),
    ("not_exists", True),
    ("is_empty", True),
    ("is_not_empty", False),
])
def test_absent_field(operator, expected):
    trace = evaluate_condition(_cond("no_such_field", operator, "x"), ORDER)
    assert trace.result is expected
    assert trace.to_dict()["actualValue"] is None


def test_list_fields_any_for_positive_all_for_negative():
    assert evaluate_condition(_cond("line_items.vendor", "equals", "globex"), ORDER).result is True
    assert evaluate_condition(_cond("line_items.vendor", "not_equals", "Initech"), ORDER).result is True
    assert evaluate_condition(_cond("line_items.vendor", "not_equals", "Acme"), ORDER).result is False
    assert evaluate_condition(_cond("line_items.quantity", "greater_than", 1), ORDER).result is True


def test_in_accepts_list_or_comma_string():
    assert evaluate_condition(_cond("default_address.country_code", "in", ["NZ", "au"]), ORDER).result is True
    assert evaluate_condition(_cond("default_address.country_code", "in", "US,NZ"), ORDER).result is False
    assert evaluate_condition(_cond("default_address.country_code", "not_in", "US,NZ"), ORDER).result is True


def test_empty_string_is_empty_but_exists():
    assert evaluate_condition(_cond("note", "is_empty"), ORDER).result is True
    assert evaluate_condition(_cond("note", "exists"), ORDER).result is True


def test_unknown_operator_is_false():
    assert evaluate_condition(_cond("email", "matches_regex", ".*"), ORDER).result is False


# 方法 2：logicalOperator 严格从左到右结合，A OR B AND C == (A OR B) AND C
def test_sequential_combinator():
    true_c = _cond("total_price", ">", 100, "OR")
    false_c = _cond("total_price", ">", 1000, "AND")
    false_last = _cond("email", "equals", "nobody@example.com")

    # (T OR F) AND F -> False；AND 优先的话会得到 T OR (F AND F) = True
    assert evaluate(ORDER, [true_c, false_c, false_last]).matches is False

    true_last = _cond("email", "contains", "jane")
    assert evaluate(ORDER, [true_c, false_c, true_last]).matches is True

    result = evaluate(ORDER, [false_c, true_c])
    assert result.matches is False
    assert [t.result for t in result.trace] == [False, True]


def test_rule_logic_is_uniform():
    conds = [_cond("total_price", ">", 1000), _cond("email", "contains", "jane")]
    assert evaluate_all(ORDER, conds, "AND").matches is False
    assert evaluate_all(ORDER, conds, "or").matches is True
