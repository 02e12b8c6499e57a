from __future__ import annotations

import asyncio
import logging

from apps.contracts_api.chain import Web3ChainReader, build_web3
from apps.contracts_api.config import get_settings
from apps.contracts_api.contract_store import ContractStore, create_pool
from apps.contracts_api.contract_sync import ContractSyncer
from apps.contracts_api.sync_scheduler import run_sync_loop
from apps.contracts_api.template_reader import ContractStateReader

LOGGER = logging.getLogger('civitas.contract_sync')


async def _run() -> None:
    settings = get_settings()
    LOGGER.info(
        'starting contract sync worker network=%s interval_seconds=%s',
        settings.network_mode,
        settings.contract_sync_interval_seconds
    )
    pool = await create_pool(settings)
    web3 = build_web3(settings)
    try:
        syncer = ContractSyncer(
            store=ContractStore(pool),
            reader=ContractStateReader(Web3ChainReader(web3))
        )
        await run_sync_loop(
            syncer,
            settings.contract_sync_interval_seconds,
            settings.contract_sync_initial_delay_seconds
        )
    finally:
        await web3.provider.disconnect()
        await pool.close()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    asyncio.run(_run())


if __name__ == '__main__':
    main()
