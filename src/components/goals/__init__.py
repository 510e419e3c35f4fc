"""
Goals component - Metric targets over calendar periods.
"""

from .component import (
    DEFAULT_CONFIG,
    GoalConfig,
    clamp_target,
    evaluate,
    goal_date_range,
    goal_from_json,
    goal_to_json,
    goal_value,
    load_goal,
    run,
    run_check,
    run_create,
    run_delete,
    run_get,
    run_list,
    run_update,
    save_goal,
)
from .models import (
    CheckGoalsInput,
    CheckGoalsOutput,
    Comparison,
    CreateGoalInput,
    DeleteGoalInput,
    DeleteGoalOutput,
    GetGoalInput,
    Goal,
    GoalEvaluation,
    GoalListOutput,
    GoalOutput,
    GoalPeriod,
    GoalProgress,
    GoalValidationError,
    ListGoalsInput,
    UpdateGoalInput,
)

__all__ = [
    # Entry points
    "run",
    "run_check",
    "run_create",
    "run_delete",
    "run_get",
    "run_list",
    "run_update",
    # Functions
    "clamp_target",
    "evaluate",
    "goal_date_range",
    "goal_from_json",
    "goal_to_json",
    "goal_value",
    "load_goal",
    "save_goal",
    # Config
    "DEFAULT_CONFIG",
    "GoalConfig",
    # Models
    "CheckGoalsInput",
    "CheckGoalsOutput",
    "Comparison",
    "CreateGoalInput",
    "DeleteGoalInput",
    "DeleteGoalOutput",
    "GetGoalInput",
    "Goal",
    "GoalEvaluation",
    "GoalListOutput",
    "GoalOutput",
    "GoalPeriod",
    "GoalProgress",
    "GoalValidationError",
    "ListGoalsInput",
    "UpdateGoalInput",
]
