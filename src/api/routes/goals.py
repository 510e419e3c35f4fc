"""
Goal API Routes.

CRUD for goals; listing evaluates each goal over its current period,
stores the value, and sends completion notifications.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from src.adapters.clock import SystemClock
from src.adapters.log_notifier import LoggingGoalNotifier
from src.adapters.site_directory import KVSiteDirectory
from src.api.deps import (
    get_clock,
    get_current_user_id,
    get_goal_config,
    get_notifier,
    get_site_directory,
    get_store,
    require_site_owner,
)
from src.api.errors import raise_for_errors
from src.components.goals import (
    CheckGoalsInput,
    CreateGoalInput,
    DeleteGoalInput,
    Goal,
    GoalConfig,
    UpdateGoalInput,
    goal_to_json,
    run_check,
    run_create,
    run_delete,
    run_update,
)
from src.core.errors import ValidationError
from src.core.ports.kv import KeyValueStorePort

router = APIRouter()


# --- Request Models ---


class CreateGoalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_id: str | None = Field(None, alias="siteId")
    name: str | None = None
    metric: str | None = None
    target: int | float | str | None = None
    period: str | None = None
    comparison: str | None = None
    notify_on_complete: bool = Field(False, alias="notifyOnComplete")


class UpdateGoalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_id: str | None = Field(None, alias="siteId")
    goal_id: str | None = Field(None, alias="goalId")
    name: str | None = None
    metric: str | None = None
    target: int | float | str | None = None
    period: str | None = None
    comparison: str | None = None
    notify_on_complete: bool | None = Field(None, alias="notifyOnComplete")


# --- Helpers ---


def _require(value: str | None, message: str, field_name: str) -> str:
    if not value:
        raise ValidationError(message, code="missing_field", field_name=field_name)
    return value


def goal_response(goal: Goal | None) -> dict[str, Any]:
    assert goal is not None
    return goal_to_json(goal)


# --- Routes ---


@router.get("")
def list_goals(
    site_id: str = Query(..., alias="siteId"),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    notifier: LoggingGoalNotifier = Depends(get_notifier),
    config: GoalConfig = Depends(get_goal_config),
) -> dict[str, Any]:
    require_site_owner(site_id, user_id, sites)
    out = run_check(
        CheckGoalsInput(site_id=site_id, today=clock.today_utc()),
        store=store,
        time_port=clock,
        notifier=notifier,
        config=config,
    )
    raise_for_errors(out.errors)
    return {
        "goals": [
            {
                **goal_to_json(p.goal),
                "currentValue": p.evaluation.current_value,
                "progress": p.evaluation.progress,
                "isComplete": p.evaluation.is_complete,
                "dateRange": {"startDate": p.start.isoformat(), "endDate": p.end.isoformat()},
            }
            for p in out.goals
        ],
        "metrics": list(config.metrics),
        "periods": list(config.periods),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_goal(
    body: CreateGoalRequest,
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    config: GoalConfig = Depends(get_goal_config),
) -> dict[str, Any]:
    site_id = _require(body.site_id, "Site ID required", "siteId")
    require_site_owner(site_id, user_id, sites)

    out = run_create(
        CreateGoalInput(
            site_id=site_id,
            name=body.name,
            metric=body.metric,
            target=body.target,
            period=body.period,
            comparison=body.comparison,
            notify_on_complete=body.notify_on_complete,
        ),
        store=store,
        time_port=clock,
        config=config,
    )
    raise_for_errors(out.errors)
    return {"goal": goal_response(out.goal)}


@router.patch("")
def update_goal(
    body: UpdateGoalRequest,
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    config: GoalConfig = Depends(get_goal_config),
) -> dict[str, Any]:
    goal_id = _require(body.goal_id, "Goal ID required", "goalId")
    site_id = _require(body.site_id, "Site ID required", "siteId")
    require_site_owner(site_id, user_id, sites)

    out = run_update(
        UpdateGoalInput(
            site_id=site_id,
            goal_id=goal_id,
            name=body.name,
            metric=body.metric,
            target=body.target,
            period=body.period,
            comparison=body.comparison,
            notify_on_complete=body.notify_on_complete,
        ),
        store=store,
        time_port=clock,
        config=config,
    )
    raise_for_errors(out.errors)
    return {"goal": goal_response(out.goal)}


@router.delete("")
def delete_goal(
    site_id: str = Query(..., alias="siteId"),
    goal_id: str = Query(..., alias="goalId"),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
) -> dict[str, Any]:
    require_site_owner(site_id, user_id, sites)
    out = run_delete(DeleteGoalInput(site_id=site_id, goal_id=goal_id), store=store)
    raise_for_errors(out.errors)
    return {"success": True}
