from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from prometheus_client import Counter

from .contract_store import ContractRecord, ContractStore
from .template_reader import ContractStateReader, UnknownTemplateError
from .templates import get_template

logger = logging.getLogger(__name__)

# Contracts in state 0 have not reached a final lifecycle stage.
ACTIVE_STATE = 0

_ADDRESS_RE = re.compile(r'0x[a-fA-F0-9]{40}')

CONTRACT_SYNCS_TOTAL = Counter(
    'civitas_contract_syncs_total',
    'Single-contract state syncs',
    ['trigger', 'result']
)
SYNC_RUNS_TOTAL = Counter(
    'civitas_sync_runs_total',
    'Scheduled contract sync runs',
    ['outcome']
)


class ContractServiceError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class EventSyncer(Protocol):
    async def sync_contract_events(self, contract_address: str, template_id: str) -> int:
        ...


def is_evm_address(value: str | None) -> bool:
    return bool(value) and bool(_ADDRESS_RE.fullmatch(str(value)))


def normalize_address(value: str | None, label: str = 'address') -> str:
    if not is_evm_address(value):
        raise ContractServiceError(status_code=400, detail=f'Invalid {label}')
    return str(value).lower()


@dataclass(frozen=True)
class SyncRunSummary:
    candidates: int
    succeeded: int
    failed: int
    aborted: bool = False


@dataclass(frozen=True)
class ManualSyncResult:
    contract: ContractRecord
    events_synced: int | None = None
    event_sync_error: str | None = None


class ContractSyncer:
    def __init__(
        self,
        store: ContractStore,
        reader: ContractStateReader,
        event_syncer: EventSyncer | None = None
    ) -> None:
        self.store = store
        self.reader = reader
        self.event_syncer = event_syncer

    async def sync_contract(self, contract_address: str) -> ContractRecord:
        address = contract_address.lower()
        record = await self.store.get_by_address(address)
        if record is None:
            raise ContractServiceError(status_code=404, detail='Contract not found')
        return await self._sync_record(record)

    async def _sync_record(self, record: ContractRecord) -> ContractRecord:
        snapshot = await self.reader.read_state(record.contract_address, record.template_id)
        # One update per contract: readers see the previous snapshot until this lands.
        updated = await self.store.update(record.contract_address, {'on_chain_state': snapshot})
        if updated is None:
            raise ContractServiceError(status_code=404, detail='Contract not found')
        logger.info(
            'contract synced contract=%s template=%s null_fields=%s',
            record.contract_address,
            record.template_id,
            sum(1 for value in snapshot.values() if value is None)
        )
        return updated

    async def run_scheduled_sync(self) -> SyncRunSummary:
        try:
            candidates = await self.store.list_by_state(ACTIVE_STATE)
        except Exception:
            logger.exception('sync job failed catastrophically')
            SYNC_RUNS_TOTAL.labels(outcome='aborted').inc()
            return SyncRunSummary(candidates=0, succeeded=0, failed=0, aborted=True)

        if not candidates:
            SYNC_RUNS_TOTAL.labels(outcome='empty').inc()
            return SyncRunSummary(candidates=0, succeeded=0, failed=0)

        logger.info('syncing contracts count=%s', len(candidates))
        results = await asyncio.gather(
            *(self._sync_record(record) for record in candidates),
            return_exceptions=True
        )

        failed = 0
        for record, result in zip(candidates, results):
            if not isinstance(result, BaseException):
                CONTRACT_SYNCS_TOTAL.labels(trigger='scheduled', result='ok').inc()
                continue
            failed += 1
            CONTRACT_SYNCS_TOTAL.labels(trigger='scheduled', result='failed').inc()
            logger.error(
                'contract sync failed contract=%s template=%s chain_id=%s error=%s',
                record.contract_address,
                record.template_id,
                record.chain_id,
                result,
                exc_info=result
            )

        summary = SyncRunSummary(
            candidates=len(candidates),
            succeeded=len(candidates) - failed,
            failed=failed
        )
        SYNC_RUNS_TOTAL.labels(outcome='completed').inc()
        logger.info('contract sync complete succeeded=%s failed=%s', summary.succeeded, summary.failed)
        return summary

    async def manual_sync(self, contract_address: str) -> ManualSyncResult:
        """Sync one contract on request, then refresh its event history best-effort.

        The event refresh never changes the outcome: any failure there is
        logged and reported on the result, and the synced record is returned.
        A record whose template no longer resolves is returned unchanged.
        """
        address = normalize_address(contract_address, 'contract address')
        logger.info('contract sync requested contract=%s', address)

        current = await self.store.get_by_address(address)
        if current is None:
            raise ContractServiceError(status_code=404, detail='Contract not found')

        try:
            record = await self._sync_record(current)
        except UnknownTemplateError:
            CONTRACT_SYNCS_TOTAL.labels(trigger='manual', result='skipped').inc()
            logger.warning(
                'skipping contract sync for unknown template contract=%s template=%s',
                address,
                current.template_id
            )
            return ManualSyncResult(contract=current)
        except ContractServiceError:
            raise
        except Exception:
            CONTRACT_SYNCS_TOTAL.labels(trigger='manual', result='failed').inc()
            raise
        CONTRACT_SYNCS_TOTAL.labels(trigger='manual', result='ok').inc()

        if self.event_syncer is None or get_template(record.template_id) is None:
            return ManualSyncResult(contract=record)

        try:
            events_synced = await self.event_syncer.sync_contract_events(address, record.template_id)
        except Exception as exc:
            logger.error('failed to sync events during manual sync contract=%s error=%s', address, exc)
            return ManualSyncResult(contract=record, event_sync_error=str(exc) or exc.__class__.__name__)
        return ManualSyncResult(contract=record, events_synced=events_synced)
