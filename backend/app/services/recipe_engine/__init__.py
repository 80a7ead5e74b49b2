"""
recipe 引擎对外入口：
- 条件评估 / 字段取值是纯函数，可以在 dry-run 里直接用
- RecipeEngine 负责编排（查 recipe、执行、日志、统计）
"""

from .engine import RecipeEngine
from .condition_evaluator import evaluate, evaluate_all, evaluate_condition, SUPPORTED_OPERATORS
from .field_accessor import get_field_value, has_field
from .action_executor import execute_action, execute_actions, ACTION_HANDLERS
from .types import (
    ABSENT, Action, ActionResult, ActionType, Condition, ConditionTrace,
    EvaluationResult, ExecutionResult, ExecutionSummary, PreviewResult,
)


__all__ = [
    "RecipeEngine",
    "evaluate", "evaluate_all", "evaluate_condition", "SUPPORTED_OPERATORS",
    "get_field_value", "has_field",
    "execute_action", "execute_actions", "ACTION_HANDLERS",
    "ABSENT", "Action", "ActionResult", "ActionType", "Condition", "ConditionTrace",
    "EvaluationResult", "ExecutionResult", "ExecutionSummary", "PreviewResult",
]
