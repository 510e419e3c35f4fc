"""
Funnel API Routes.

CRUD for funnel definitions; listing evaluates each funnel over the
requested range (default: start of the current month to today).
"""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from src.adapters.clock import SystemClock
from src.adapters.site_directory import KVSiteDirectory
from src.api.deps import (
    get_clock,
    get_current_user_id,
    get_funnel_config,
    get_site_directory,
    get_store,
    require_site_owner,
)
from src.api.errors import raise_for_errors
from src.components.funnels import (
    CreateFunnelInput,
    DeleteFunnelInput,
    EvaluateFunnelInput,
    FunnelConfig,
    FunnelDefinition,
    FunnelEvaluationOutput,
    ListFunnelsInput,
    UpdateFunnelInput,
    funnel_to_json,
    run_create,
    run_delete,
    run_evaluate,
    run_list,
    run_update,
)
from src.core.errors import ValidationError
from src.core.ports.kv import KeyValueStorePort

router = APIRouter()


# --- Request Models ---


class CreateFunnelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_id: str | None = Field(None, alias="siteId")
    name: str | None = None
    steps: list[Any] | None = None


class UpdateFunnelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_id: str | None = Field(None, alias="siteId")
    funnel_id: str | None = Field(None, alias="funnelId")
    name: str | None = None
    steps: list[Any] | None = None


# --- Helpers ---


def _require(value: str | None, message: str, field_name: str) -> str:
    if not value:
        raise ValidationError(message, code="missing_field", field_name=field_name)
    return value


def funnel_response(funnel: FunnelDefinition | None) -> dict[str, Any]:
    assert funnel is not None
    return funnel_to_json(funnel)


def evaluation_response(result: FunnelEvaluationOutput) -> dict[str, Any]:
    return {
        "sessions": result.sessions,
        "overallConversion": result.overall_conversion,
        "steps": [
            {
                "index": s.index,
                "name": s.name,
                "count": s.count,
                "conversionRate": s.conversion_rate,
                "dropoff": s.dropoff,
                "dropoffRate": s.dropoff_rate,
            }
            for s in result.steps
        ],
    }


# --- Routes ---


@router.get("")
def list_funnels(
    site_id: str = Query(..., alias="siteId"),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
) -> dict[str, Any]:
    require_site_owner(site_id, user_id, sites)
    today = clock.today_utc()
    start = start_date or today.replace(day=1)
    end = end_date or today

    funnels = []
    for funnel in run_list(ListFunnelsInput(site_id=site_id), store=store).funnels:
        result = run_evaluate(EvaluateFunnelInput(funnel=funnel, start=start, end=end), store=store)
        raise_for_errors(result.errors)
        funnels.append(
            {
                **funnel_to_json(funnel),
                "data": evaluation_response(result),
                "dateRange": {"startDate": start.isoformat(), "endDate": end.isoformat()},
            }
        )
    return {"funnels": funnels}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_funnel(
    body: CreateFunnelRequest,
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    config: FunnelConfig = Depends(get_funnel_config),
) -> dict[str, Any]:
    site_id = _require(body.site_id, "Site ID required", "siteId")
    if not body.steps or len(body.steps) < config.min_steps:
        raise ValidationError(
            f"At least {config.min_steps} steps required", code="too_few_steps", field_name="steps"
        )
    require_site_owner(site_id, user_id, sites)

    out = run_create(
        CreateFunnelInput(site_id=site_id, name=body.name, steps=body.steps),
        store=store,
        time_port=clock,
        config=config,
    )
    raise_for_errors(out.errors)
    return {"funnel": funnel_response(out.funnel)}


@router.patch("")
def update_funnel(
    body: UpdateFunnelRequest,
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    config: FunnelConfig = Depends(get_funnel_config),
) -> dict[str, Any]:
    funnel_id = _require(body.funnel_id, "Funnel ID required", "funnelId")
    site_id = _require(body.site_id, "Site ID required", "siteId")
    require_site_owner(site_id, user_id, sites)

    out = run_update(
        UpdateFunnelInput(site_id=site_id, funnel_id=funnel_id, name=body.name, steps=body.steps),
        store=store,
        time_port=clock,
        config=config,
    )
    raise_for_errors(out.errors)
    return {"funnel": funnel_response(out.funnel)}


@router.delete("")
def delete_funnel(
    site_id: str = Query(..., alias="siteId"),
    funnel_id: str = Query(..., alias="funnelId"),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
) -> dict[str, Any]:
    require_site_owner(site_id, user_id, sites)
    out = run_delete(DeleteFunnelInput(site_id=site_id, funnel_id=funnel_id), store=store)
    raise_for_errors(out.errors)
    return {"success": True}
