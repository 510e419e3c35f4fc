"""
Funnels component - Ordered step conversion over session trails.

Funnel definitions are stored per site; evaluation reads the per-session
trails written at ingestion time and runs one pass per session.

Invariants:
- A funnel has between 2 and 10 steps, enforced when it is defined
- Steps must occur in order; unrelated activity in between is skipped
- count[i] is the number of sessions whose furthest step is >= i,
  so counts never increase along the funnel
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import uuid4

from src.core.keys import funnel_key, funnel_prefix, trail_prefix
from src.rules.models import FunnelRules

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
from .ports import KeyValueStorePort, TimePort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class FunnelConfig:
    """Funnel definition limits."""

    min_steps: int = 2
    max_steps: int = 10

    @classmethod
    def from_rules(cls, rules: FunnelRules) -> FunnelConfig:
        return cls(min_steps=rules.min_steps, max_steps=rules.max_steps)


DEFAULT_CONFIG = FunnelConfig()


class _SystemTime:
    def now_utc(self) -> datetime:
        return datetime.now(UTC)


# --- Validation ---


def parse_steps(
    raw_steps: Any, config: FunnelConfig = DEFAULT_CONFIG
) -> tuple[tuple[FunnelStep, ...], list[FunnelValidationError]]:
    """Validate raw step mappings into FunnelSteps."""
    if not isinstance(raw_steps, list) or len(raw_steps) < config.min_steps:
        return (), [
            FunnelValidationError(
                "too_few_steps", f"At least {config.min_steps} steps required", "steps"
            )
        ]
    if len(raw_steps) > config.max_steps:
        return (), [
            FunnelValidationError(
                "too_many_steps", f"At most {config.max_steps} steps allowed", "steps"
            )
        ]

    steps: list[FunnelStep] = []
    errors: list[FunnelValidationError] = []
    for i, raw in enumerate(raw_steps):
        if not isinstance(raw, dict):
            errors.append(FunnelValidationError("invalid_step", f"Step {i + 1} must be an object", "steps"))
            continue
        try:
            step_type = StepType(str(raw.get("type", "")).lower())
        except ValueError:
            errors.append(
                FunnelValidationError("invalid_step_type", f"Invalid step type at step {i + 1}", "steps")
            )
            continue
        value = str(raw.get("value") or "").strip()
        if not value:
            errors.append(
                FunnelValidationError("missing_field", f"Step {i + 1} value required", "steps")
            )
            continue
        name = raw.get("name")
        steps.append(FunnelStep(type=step_type, value=value, name=str(name) if name else None))

    return tuple(steps), errors


# --- Serialisation ---


def funnel_to_json(funnel: FunnelDefinition) -> dict[str, Any]:
    return {
        "id": funnel.id,
        "site_id": funnel.site_id,
        "name": funnel.name,
        "steps": [{"type": s.type.value, "value": s.value, "name": s.name} for s in funnel.steps],
        "created_at": funnel.created_at.isoformat(),
        "updated_at": funnel.updated_at.isoformat() if funnel.updated_at else None,
    }


def funnel_from_json(data: dict[str, Any]) -> FunnelDefinition:
    updated = data.get("updated_at")
    return FunnelDefinition(
        id=data["id"],
        site_id=data["site_id"],
        name=data.get("name") or "",
        steps=tuple(
            FunnelStep(type=StepType(s["type"]), value=s["value"], name=s.get("name"))
            for s in data.get("steps", [])
        ),
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(updated) if updated else None,
    )


def _not_found() -> FunnelValidationError:
    return FunnelValidationError("not_found", "Funnel not found", "funnel_id")


def load_funnel(store: KeyValueStorePort, site_id: str, funnel_id: str) -> FunnelDefinition | None:
    data = store.get(funnel_key(site_id, funnel_id), as_json=True)
    return funnel_from_json(data) if data else None


# --- Matching ---


def path_matches(pattern: str, path: str) -> bool:
    """Exact path, or prefix match for `prefix/*`."""
    if pattern.endswith("/*"):
        return path.startswith(pattern[:-1])
    return path == pattern


def step_matches(step: FunnelStep, entry: list[Any] | tuple[Any, ...]) -> bool:
    """Match a trail entry `[timestamp, kind, path, name]` against a step."""
    _, kind, path, name = entry[:4]
    if step.type == StepType.PAGE:
        return kind == "pageview" and path_matches(step.value, path)
    return kind == "custom" and name == step.value


def furthest_step(entries: list[Any], steps: tuple[FunnelStep, ...]) -> int:
    """
    Single pass over a session's activity in timestamp order.

    State is the last matched step index (-1 before the first step);
    it advances on the first entry satisfying the next step.
    """
    state = -1
    for entry in sorted(entries, key=lambda e: e[0]):
        if state + 1 >= len(steps):
            break
        if step_matches(steps[state + 1], entry):
            state += 1
    return state


def step_counts(reached: list[int], step_total: int) -> list[int]:
    """count[i] = sessions whose furthest index is >= i."""
    return [sum(1 for r in reached if r >= i) for i in range(step_total)]


def percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def load_trails(
    store: KeyValueStorePort, site_id: str, start: date, end: date
) -> dict[str, list[Any]]:
    """Session id -> trail entries for every date in range."""
    trails: dict[str, list[Any]] = defaultdict(list)
    day = start
    while day <= end:
        prefix = trail_prefix(site_id, day)
        for key in store.list(prefix):
            trails[key[len(prefix):]].extend(store.get(key, as_json=True) or [])
        day += timedelta(days=1)
    return dict(trails)


# --- Component Entry Points ---


def run_create(
    inp: CreateFunnelInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
    config: FunnelConfig = DEFAULT_CONFIG,
) -> FunnelOutput:
    """Validate and store a new funnel."""
    if not inp.site_id:
        return FunnelOutput(
            errors=[FunnelValidationError("missing_field", "Site ID required", "site_id")],
            success=False,
        )
    steps, errors = parse_steps(inp.steps, config)
    if errors:
        return FunnelOutput(errors=errors, success=False)

    funnel = FunnelDefinition(
        id=uuid4().hex,
        site_id=inp.site_id,
        name=(inp.name or "").strip() or "Untitled funnel",
        steps=steps,
        created_at=(time_port or _SystemTime()).now_utc(),
    )
    store.set_json(funnel_key(funnel.site_id, funnel.id), funnel_to_json(funnel))
    logger.info("Created funnel %s for site %s", funnel.id, funnel.site_id)
    return FunnelOutput(funnel=funnel)


def run_get(inp: GetFunnelInput, *, store: KeyValueStorePort) -> FunnelOutput:
    funnel = load_funnel(store, inp.site_id, inp.funnel_id)
    if funnel is None:
        return FunnelOutput(errors=[_not_found()], success=False)
    return FunnelOutput(funnel=funnel)


def run_list(inp: ListFunnelsInput, *, store: KeyValueStorePort) -> FunnelListOutput:
    funnels = []
    for key in store.list(funnel_prefix(inp.site_id)):
        data = store.get(key, as_json=True)
        if data:
            funnels.append(funnel_from_json(data))
    funnels.sort(key=lambda f: (f.created_at, f.id))
    return FunnelListOutput(funnels=tuple(funnels))


def run_update(
    inp: UpdateFunnelInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
    config: FunnelConfig = DEFAULT_CONFIG,
) -> FunnelOutput:
    """Apply a partial update; replaced steps are validated like new ones."""
    funnel = load_funnel(store, inp.site_id, inp.funnel_id)
    if funnel is None:
        return FunnelOutput(errors=[_not_found()], success=False)

    steps = funnel.steps
    if inp.steps is not None:
        steps, errors = parse_steps(inp.steps, config)
        if errors:
            return FunnelOutput(errors=errors, success=False)

    updated = FunnelDefinition(
        id=funnel.id,
        site_id=funnel.site_id,
        name=(inp.name.strip() or funnel.name) if inp.name is not None else funnel.name,
        steps=steps,
        created_at=funnel.created_at,
        updated_at=(time_port or _SystemTime()).now_utc(),
    )
    store.set_json(funnel_key(updated.site_id, updated.id), funnel_to_json(updated))
    return FunnelOutput(funnel=updated)


def run_delete(inp: DeleteFunnelInput, *, store: KeyValueStorePort) -> DeleteFunnelOutput:
    key = funnel_key(inp.site_id, inp.funnel_id)
    if store.get(key) is None:
        return DeleteFunnelOutput(errors=[_not_found()], success=False)
    store.delete(key)
    logger.info("Deleted funnel %s for site %s", inp.funnel_id, inp.site_id)
    return DeleteFunnelOutput(deleted=True)


def run_evaluate(
    inp: EvaluateFunnelInput,
    *,
    store: KeyValueStorePort,
) -> FunnelEvaluationOutput:
    """Count sessions reaching each step of the funnel within the range."""
    funnel = inp.funnel
    if inp.start > inp.end:
        return FunnelEvaluationOutput(
            funnel_id=funnel.id,
            errors=[FunnelValidationError("invalid_range", "Start date must be before end date", "start_date")],
            success=False,
        )

    trails = load_trails(store, funnel.site_id, inp.start, inp.end)
    reached = [furthest_step(entries, funnel.steps) for entries in trails.values()]
    counts = step_counts(reached, len(funnel.steps))
    first = counts[0] if counts else 0

    results = []
    for i, (step, count) in enumerate(zip(funnel.steps, counts, strict=True)):
        previous = counts[i - 1] if i > 0 else count
        results.append(
            FunnelStepResult(
                index=i,
                name=step.label,
                count=count,
                conversion_rate=percent(count, first),
                dropoff=previous - count,
                dropoff_rate=percent(previous - count, previous),
            )
        )

    return FunnelEvaluationOutput(
        funnel_id=funnel.id,
        sessions=len(trails),
        steps=tuple(results),
        overall_conversion=percent(counts[-1], first) if counts else 0.0,
    )


def run(inp: Any, **kwargs: Any) -> Any:
    """Dispatch to the entry point matching the input type."""
    if isinstance(inp, CreateFunnelInput):
        return run_create(inp, **kwargs)
    if isinstance(inp, GetFunnelInput):
        return run_get(inp, **kwargs)
    if isinstance(inp, ListFunnelsInput):
        return run_list(inp, **kwargs)
    if isinstance(inp, UpdateFunnelInput):
        return run_update(inp, **kwargs)
    if isinstance(inp, DeleteFunnelInput):
        return run_delete(inp, **kwargs)
    if isinstance(inp, EvaluateFunnelInput):
        return run_evaluate(inp, **kwargs)
    raise ValueError(f"Unknown input type: {type(inp)}")
