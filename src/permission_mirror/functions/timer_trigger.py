"""Timer trigger blueprint — daily full syncs and subscription renewals."""

import logging

import azure.durable_functions as df
import azure.functions as func

from permission_mirror.config import load_config
from permission_mirror.orchestration.scheduler import (
    schedule_full_syncs,
    schedule_subscription_renewals,
)
from permission_mirror.state.store import state_store_from_config

logger = logging.getLogger(__name__)

bp = df.Blueprint()


async def run_full_sync_schedule(client: df.DurableOrchestrationClient) -> list[str]:
    """Start a full sync for every installed organisation."""
    config = load_config()
    store = state_store_from_config(config)
    return await schedule_full_syncs(client, store)


async def run_subscription_renewal_schedule(client: df.DurableOrchestrationClient) -> list[str]:
    """Renew subscriptions that expire within the configured threshold."""
    config = load_config()
    store = state_store_from_config(config)
    return await schedule_subscription_renewals(
        client, store, config.subscription_renewal_threshold_days
    )


@bp.timer_trigger(
    schedule="0 0 2 * * *",
    arg_name="timer",
    run_on_startup=False,
)
@bp.durable_client_input(client_name="client")
async def full_sync_timer(timer: func.TimerRequest, client: df.DurableOrchestrationClient) -> None:
    """Scheduled trigger that starts a full sync of every organisation.

    Runs daily at 02:00 UTC. Each sync deletes, once finished, every object
    the platform holds that it did not refresh.
    """
    logger.info("[full_sync_timer] timer fired")

    try:
        if timer.past_due:
            logger.warning("[full_sync_timer] timer is past due")

        instance_ids = await run_full_sync_schedule(client)
        logger.info("[full_sync_timer] full syncs scheduled; count:%d", len(instance_ids))

    except Exception:
        logger.exception("[full_sync_timer] scheduling failed")
        raise


@bp.timer_trigger(
    schedule="0 30 */6 * * *",
    arg_name="timer",
    run_on_startup=False,
)
@bp.durable_client_input(client_name="client")
async def subscription_renewal_timer(
    timer: func.TimerRequest, client: df.DurableOrchestrationClient
) -> None:
    """Scheduled trigger that renews change subscriptions close to expiry.

    Runs every 6 hours.
    """
    logger.info("[subscription_renewal_timer] timer fired")

    try:
        if timer.past_due:
            logger.warning("[subscription_renewal_timer] timer is past due")

        renewed = await run_subscription_renewal_schedule(client)
        logger.info("[subscription_renewal_timer] renewals scheduled; count:%d", len(renewed))

    except Exception:
        logger.exception("[subscription_renewal_timer] scheduling failed")
        raise
