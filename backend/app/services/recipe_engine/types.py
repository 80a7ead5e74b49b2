# recipe 引擎的数据结构（条件 / 动作 / 执行结果）

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ActionType(str, Enum):
    ADD_TAG = "addTag"
    REMOVE_TAG = "removeTag"
    SET_METAFIELD = "setMetafield"
    REMOVE_METAFIELD = "removeMetafield"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


# 不存在的字段（区别于值为 None / 空串）
class _Absent:
    _instance: Optional["_Absent"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


@dataclass(slots=True)
class Condition:
    field: str
    operator: str
    value: Any = None
    logical_operator: str = LogicalOperator.AND.value      # 与“下一条”条件的连接方式

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        data = data or {}
        op = str(data.get("logicalOperator") or data.get("logical_operator") or "AND").upper()
        return cls(
            field=str(data.get("field") or ""),
            operator=str(data.get("operator") or ""),
            value=data.get("value"),
            logical_operator=op if op in ("AND", "OR") else "AND",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "logicalOperator": self.logical_operator,
        }


@dataclass(slots=True)
class Action:
    type: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        """
        兼容两种写法：
          {"type": "addTag", "params": {"tag": "VIP"}}
          {"type": "addTag", "tag": "VIP"}
        """
        data = dict(data or {})
        action_type = str(data.pop("type", "") or "")
        params = dict(data.pop("params", None) or {})
        for k, v in data.items():
            params.setdefault(k, v)
        return cls(type=action_type, params=params)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "params": dict(self.params)}


@dataclass(slots=True)
class ConditionTrace:
    field: str
    operator: str
    expected: Any
    actual: Any
    result: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator,
            "expectedValue": self.expected,
            "actualValue": None if self.actual is ABSENT else self.actual,
            "result": self.result,
        }


@dataclass(slots=True)
class EvaluationResult:
    matches: bool
    trace: List[ConditionTrace] = field(default_factory=list)


@dataclass(slots=True)
class ActionResult:
    action: Action
    success: bool
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.to_dict(),
            "success": self.success,
            "error": self.error,
            "durationMs": self.duration_ms,
        }


@dataclass(slots=True)
class ExecutionResult:
    recipe_id: str
    recipe_title: str
    conditions_matched: bool
    actions_executed: int
    success: bool
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0
    action_results: List[ActionResult] = field(default_factory=list)


@dataclass(slots=True)
class ExecutionSummary:
    recipes_evaluated: int = 0
    recipes_matched: int = 0
    recipes_skipped: int = 0
    actions_executed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipesEvaluated": self.recipes_evaluated,
            "recipesMatched": self.recipes_matched,
            "recipesSkipped": self.recipes_skipped,
            "actionsExecuted": self.actions_executed,
            "errors": list(self.errors),
            "duration": self.duration_ms,
        }


@dataclass(slots=True)
class PreviewResult:
    conditions_matched: bool
    evaluations: List[ConditionTrace]
    actions_to_execute: List[Action]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conditionsMatched": self.conditions_matched,
            "evaluations": [e.to_dict() for e in self.evaluations],
            "actionsToExecute": [a.to_dict() for a in self.actions_to_execute],
        }
