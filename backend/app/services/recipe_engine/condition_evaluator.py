"""
条件评估：纯函数，无 I/O，不抛异常。

  - 字符串比较一律忽略大小写
  - 数值比较（greater_than / less_than）两边都必须能解析成有限数字，否则为 False
  - 字段不存在：除 not_exists / is_empty 外一律不命中（not_equals / not_in 也不命中）
  - 字段是列表：正向运算符任一元素满足即可，反向运算符（not_*）要求所有元素都满足
  - recipe 的 logicalOperator 表示“与下一条”的连接方式，严格从左到右依次结合，不做 AND 优先
"""
from __future__ import annotations

import logging, math
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from app.services.recipe_engine.field_accessor import get_field_value
from app.services.recipe_engine.types import ABSENT, Condition, ConditionTrace, EvaluationResult


logger = logging.getLogger(__name__)


ConditionLike = Union[Condition, Dict[str, Any]]


# recipe 里的符号写法
OPERATOR_ALIASES = {
    ">": "greater_than",
    "<": "less_than",
    "=": "equals",
    "==": "equals",
    "!=": "not_equals",
}

# 针对“字段存在性 / 空值”本身的运算符，整体判断，不展开列表
ABSENCE_OPERATORS = frozenset({"exists", "not_exists", "is_empty", "is_not_empty"})
NEGATIVE_OPERATORS = frozenset({"not_equals", "not_contains", "not_in"})


# --------- 值规范化 ----------
def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip().casefold()


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _options(expected: Any) -> List[Any]:
    # in / not_in：列表或逗号分隔字符串
    if isinstance(expected, (list, tuple, set)):
        return list(expected)
    if expected is None:
        return []
    return [part for part in str(expected).split(",") if part.strip()]


def _is_empty(actual: Any) -> bool:
    if actual is ABSENT or actual is None:
        return True
    if isinstance(actual, (list, tuple, dict, set)):
        return len(actual) == 0
    return str(actual).strip() == ""


# --------- 单值运算符 ----------
def _equals(actual: Any, expected: Any) -> bool:
    if _text(actual) == _text(expected):
        return True
    a, e = _number(actual), _number(expected)
    return a is not None and e is not None and a == e


def _contains(actual: Any, expected: Any) -> bool:
    return _text(expected) in _text(actual)


def _starts_with(actual: Any, expected: Any) -> bool:
    return _text(actual).startswith(_text(expected))


def _ends_with(actual: Any, expected: Any) -> bool:
    return _text(actual).endswith(_text(expected))


def _greater_than(actual: Any, expected: Any) -> bool:
    a, e = _number(actual), _number(expected)
    return a is not None and e is not None and a > e


def _less_than(actual: Any, expected: Any) -> bool:
    a, e = _number(actual), _number(expected)
    return a is not None and e is not None and a < e


def _in(actual: Any, expected: Any) -> bool:
    return any(_equals(actual, opt) for opt in _options(expected))


# 正向运算符表；not_* 由对应的正向运算符取反得到
SCALAR_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "contains": _contains,
    "starts_with": _starts_with,
    "ends_with": _ends_with,
    "greater_than": _greater_than,
    "less_than": _less_than,
    "in": _in,
}

_NEGATED = {
    "not_equals": "equals",
    "not_contains": "contains",
    "not_in": "in",
}

SUPPORTED_OPERATORS = frozenset(SCALAR_OPERATORS) | frozenset(_NEGATED) | ABSENCE_OPERATORS


def normalize_operator(operator: str) -> str:
    op = str(operator or "").strip()
    return OPERATOR_ALIASES.get(op, op.lower())


def _apply(operator: str, actual: Any, expected: Any) -> bool:
    if actual is None:
        actual = ABSENT

    if operator == "exists":
        return actual is not ABSENT
    if operator == "not_exists":
        return actual is ABSENT
    if operator == "is_empty":
        return _is_empty(actual)
    if operator == "is_not_empty":
        return not _is_empty(actual)

    if actual is ABSENT:
        return False

    if operator in _NEGATED:
        positive = SCALAR_OPERATORS[_NEGATED[operator]]
        if isinstance(actual, list):
            return all(not positive(item, expected) for item in actual if item is not None)
        return not positive(actual, expected)

    fn = SCALAR_OPERATORS.get(operator)
    if fn is None:
        logger.warning("condition.unknown_operator operator=%s", operator)
        return False
    if isinstance(actual, list):
        return any(fn(item, expected) for item in actual if item is not None)
    return fn(actual, expected)


def _as_condition(cond: ConditionLike) -> Condition:
    return cond if isinstance(cond, Condition) else Condition.from_dict(cond)


def evaluate_condition(condition: ConditionLike, resource: Any) -> ConditionTrace:
    cond = _as_condition(condition)
    actual = get_field_value(resource, cond.field)
    operator = normalize_operator(cond.operator)
    try:
        result = bool(_apply(operator, actual, cond.value))
    except Exception as e:  # 畸形值一律按不命中处理
        logger.debug("condition.eval_error field=%s operator=%s err=%s", cond.field, operator, e)
        result = False
    return ConditionTrace(
        field=cond.field,
        operator=cond.operator,
        expected=cond.value,
        actual=actual,
        result=result,
    )


def evaluate(resource: Any, conditions: Optional[Sequence[ConditionLike]]) -> EvaluationResult:
    """
    recipe 条件：第 i 条的 logicalOperator 决定它和第 i+1 条怎么结合，从左到右依次累积。
    A OR B AND C == (A OR B) AND C
    """
    conds = [_as_condition(c) for c in (conditions or [])]
    if not conds:
        return EvaluationResult(matches=True, trace=[])

    trace = [evaluate_condition(c, resource) for c in conds]
    matches = trace[0].result
    for prev, current in zip(conds, trace[1:]):
        if prev.logical_operator == "OR":
            matches = matches or current.result
        else:
            matches = matches and current.result
    return EvaluationResult(matches=matches, trace=trace)


def evaluate_all(resource: Any, conditions: Optional[Iterable[ConditionLike]], logic: str = "AND") -> EvaluationResult:
    """标签 / metafield 规则：整条规则统一 AND 或 OR"""
    conds = [_as_condition(c) for c in (conditions or [])]
    if not conds:
        return EvaluationResult(matches=True, trace=[])

    trace = [evaluate_condition(c, resource) for c in conds]
    if str(logic or "AND").upper() == "OR":
        matches = any(t.result for t in trace)
    else:
        matches = all(t.result for t in trace)
    return EvaluationResult(matches=matches, trace=trace)
