"""
Funnels component - Ordered step conversion over session trails.
"""

from .component import (
    DEFAULT_CONFIG,
    FunnelConfig,
    funnel_from_json,
    funnel_to_json,
    furthest_step,
    load_funnel,
    load_trails,
    parse_steps,
    path_matches,
    run,
    run_create,
    run_delete,
    run_evaluate,
    run_get,
    run_list,
    run_update,
    step_counts,
    step_matches,
)
from .models import (
    CreateFunnelInput,
    DeleteFunnelInput,
    DeleteFunnelOutput,
    EvaluateFunnelInput,
    FunnelDefinition,
    FunnelEvaluationOutput,
    FunnelListOutput,
    FunnelOutput,
    FunnelStep,
    FunnelStepResult,
    FunnelValidationError,
    GetFunnelInput,
    ListFunnelsInput,
    StepType,
    UpdateFunnelInput,
)

__all__ = [
    # Entry points
    "run",
    "run_create",
    "run_delete",
    "run_evaluate",
    "run_get",
    "run_list",
    "run_update",
    # Functions
    "funnel_from_json",
    "funnel_to_json",
    "furthest_step",
    "load_funnel",
    "load_trails",
    "parse_steps",
    "path_matches",
    "step_counts",
    "step_matches",
    # Config
    "DEFAULT_CONFIG",
    "FunnelConfig",
    # Models
    "CreateFunnelInput",
    "DeleteFunnelInput",
    "DeleteFunnelOutput",
    "EvaluateFunnelInput",
    "FunnelDefinition",
    "FunnelEvaluationOutput",
    "FunnelListOutput",
    "FunnelOutput",
    "FunnelStep",
    "FunnelStepResult",
    "FunnelValidationError",
    "GetFunnelInput",
    "ListFunnelsInput",
    "StepType",
    "UpdateFunnelInput",
]
