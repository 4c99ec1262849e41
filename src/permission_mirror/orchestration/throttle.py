"""Per-organisation limits on workflow instances doing I/O at the same time.

One durable entity per (organisation, stage) holds the ids of the instances
that currently own a slot, each with the time the slot was taken.
Orchestrators take a slot around their provider and platform calls and give
it back before waiting on child workflows, so a parent never holds a slot
its own children need. A slot that is never given back (its holder failed
or was terminated) lapses once its lease runs out.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import azure.durable_functions as df

from permission_mirror.orchestration.common import log_info

if TYPE_CHECKING:
    from permission_mirror.config import AppConfig

logger = logging.getLogger(__name__)

# Entity function name
ORGANISATION_SLOTS = "organisation_slots"

OP_ACQUIRE = "acquire"
OP_RELEASE = "release"
OP_RESET = "reset"

STAGE_DRIVES = "drives"
STAGE_ITEMS = "items"
STAGE_DELTA = "delta"
STAGE_UPDATE_ITEMS = "update-items"
STAGE_OBJECTS = "objects"
STAGES = (STAGE_DRIVES, STAGE_ITEMS, STAGE_DELTA, STAGE_UPDATE_ITEMS, STAGE_OBJECTS)


def slots_entity_id(organisation_id: str, stage: str) -> df.EntityId:
    return df.EntityId(ORGANISATION_SLOTS, f"{organisation_id}:{stage}")


def stage_limit(config: AppConfig, stage: str) -> int:
    """Slots one organisation has in a stage."""
    limits = {
        STAGE_DRIVES: config.sync_concurrency,
        STAGE_ITEMS: config.items_sync_concurrency,
        STAGE_DELTA: config.items_sync_concurrency,
        STAGE_UPDATE_ITEMS: config.items_sync_concurrency,
        STAGE_OBJECTS: config.object_concurrency,
    }
    return limits[stage]


def grant_slot(holders: dict[str, str], request: dict[str, Any]) -> bool:
    """Give the requesting holder a slot if one is free.

    Holders whose lease ran out are dropped first. A holder that asks again
    keeps the slot it has. `holders` is updated in place.

    Args:
        holders: Holder id mapped to the ISO time its slot was taken.
        request: {holder, limit, now, lease_seconds}.

    Returns:
        True when the holder owns a slot.
    """
    now = datetime.fromisoformat(request["now"])
    lease = timedelta(seconds=request["lease_seconds"])
    for holder, taken_at in list(holders.items()):
        if datetime.fromisoformat(taken_at) + lease <= now:
            logger.warning("[grant_slot] slot lease ran out; holder:%s", holder)
            del holders[holder]

    if request["holder"] in holders:
        return True
    if len(holders) >= request["limit"]:
        return False
    holders[request["holder"]] = request["now"]
    return True


def organisation_slots(context: df.DurableEntityContext) -> None:
    """Entity body keeping the slot holders of one organisation stage."""
    holders: dict[str, str] = context.get_state(dict)
    request = context.get_input() or {}
    operation = context.operation_name

    if operation == OP_ACQUIRE:
        context.set_result(grant_slot(holders, request))
    elif operation == OP_RELEASE:
        holders.pop(request.get("holder"), None)
    elif operation == OP_RESET:
        holders.clear()
    else:
        logger.warning("[organisation_slots] unknown operation; operation:%s", operation)

    context.set_state(holders)


def acquire_slot(
    context: df.DurableOrchestrationContext,
    config: AppConfig,
    organisation_id: str,
    stage: str,
) -> Generator[Any, Any, None]:
    """Wait until the calling instance owns one of the stage's slots."""
    entity_id = slots_entity_id(organisation_id, stage)
    while True:
        granted = yield context.call_entity(
            entity_id,
            OP_ACQUIRE,
            {
                "holder": context.instance_id,
                "limit": stage_limit(config, stage),
                "now": context.current_utc_datetime.isoformat(),
                "lease_seconds": config.slot_lease_minutes * 60,
            },
        )
        if granted:
            return
        log_info(
            context,
            "[acquire_slot] all slots taken, waiting; organisation_id:%s;stage:%s;instance_id:%s",
            organisation_id,
            stage,
            context.instance_id,
        )
        yield context.create_timer(
            context.current_utc_datetime + timedelta(seconds=config.slot_poll_seconds)
        )


def release_slot(
    context: df.DurableOrchestrationContext, organisation_id: str, stage: str
) -> None:
    context.signal_entity(
        slots_entity_id(organisation_id, stage), OP_RELEASE, {"holder": context.instance_id}
    )


def throttled(
    context: df.DurableOrchestrationContext,
    config: AppConfig,
    organisation_id: str,
    stage: str,
    work: Generator[Any, Any, Any],
) -> Generator[Any, Any, Any]:
    """Run `work` while holding a slot of the organisation's stage.

    The slot is given back when `work` returns or raises.
    """
    yield from acquire_slot(context, config, organisation_id, stage)
    try:
        result = yield from work
    except Exception:
        release_slot(context, organisation_id, stage)
        raise
    release_slot(context, organisation_id, stage)
    return result
