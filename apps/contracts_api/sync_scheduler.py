from __future__ import annotations

import asyncio
import logging

from .contract_sync import ContractSyncer

logger = logging.getLogger(__name__)


async def run_sync_loop(syncer: ContractSyncer, interval_seconds: int, initial_delay_seconds: int = 0) -> None:
    """Run scheduled syncs forever, one at a time.

    Each run is awaited before the next sleep, so runs never overlap. A run
    that raises is logged and the loop carries on at the next interval.
    """
    logger.info('contract sync loop started interval_seconds=%s', interval_seconds)
    if initial_delay_seconds > 0:
        await asyncio.sleep(initial_delay_seconds)

    while True:
        try:
            await syncer.run_scheduled_sync()
        except Exception:
            logger.exception('contract sync loop iteration failed')
        await asyncio.sleep(max(1, interval_seconds))


def start_sync_loop(syncer: ContractSyncer, interval_seconds: int, initial_delay_seconds: int = 0) -> asyncio.Task:
    return asyncio.create_task(
        run_sync_loop(syncer, interval_seconds, initial_delay_seconds),
        name='contract-sync-loop'
    )


async def stop_sync_loop(task: asyncio.Task | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    logger.info('contract sync loop stopped')
