from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

import asyncpg

from .config import Settings

CONTRACT_COLUMNS = '''
  id::text AS id,
  contract_address,
  template_id,
  creator_address,
  chain_id,
  state,
  basename,
  config,
  on_chain_state,
  created_at,
  updated_at,
  last_synced_at
'''

UPDATABLE_COLUMNS = ('state', 'basename', 'config', 'on_chain_state')


class DuplicateContractError(Exception):
    def __init__(self, contract_address: str) -> None:
        super().__init__(f'Contract with address {contract_address} already exists')
        self.contract_address = contract_address


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class ContractRecord:
    id: str
    contract_address: str
    template_id: str
    creator_address: str
    chain_id: int
    state: int
    basename: str | None
    config: Any
    on_chain_state: dict[str, Any] | None
    created_at: datetime | None
    updated_at: datetime | None
    last_synced_at: datetime | None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ContractRecord:
        return cls(
            id=str(row['id']),
            contract_address=str(row['contract_address']),
            template_id=str(row['template_id']),
            creator_address=str(row['creator_address']),
            chain_id=int(row['chain_id']),
            state=int(row['state']),
            basename=row['basename'],
            config=row['config'],
            on_chain_state=row['on_chain_state'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            last_synced_at=row['last_synced_at']
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'contract_address': self.contract_address,
            'template_id': self.template_id,
            'creator_address': self.creator_address,
            'chain_id': self.chain_id,
            'state': self.state,
            'basename': self.basename,
            'config': self.config,
            'on_chain_state': self.on_chain_state,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'last_synced_at': _iso(self.last_synced_at)
        }


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec('jsonb', encoder=json.dumps, decoder=json.loads, schema='pg_catalog')
    await conn.set_type_codec('json', encoder=json.dumps, decoder=json.loads, schema='pg_catalog')


async def create_pool(settings: Settings) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        dsn=settings.postgres_dsn,
        min_size=1,
        max_size=10,
        init=_init_connection
    )


class ContractStore:
    """Contract records in PostgreSQL, keyed by lowercase contract address."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def ping(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.fetchval('SELECT 1')

    async def create(
        self,
        *,
        template_id: str,
        contract_address: str,
        creator_address: str,
        config: Any,
        chain_id: int,
        basename: str | None = None
    ) -> ContractRecord:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    INSERT INTO contracts (
                      template_id,
                      contract_address,
                      creator_address,
                      config,
                      chain_id,
                      basename
                    )
                    VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING
                    '''
                    + CONTRACT_COLUMNS,
                    template_id,
                    contract_address,
                    creator_address,
                    config,
                    chain_id,
                    basename
                )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateContractError(contract_address) from exc
        return ContractRecord.from_row(row)

    async def get_by_address(self, contract_address: str) -> ContractRecord | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT ' + CONTRACT_COLUMNS + ' FROM contracts WHERE contract_address = $1',
                contract_address
            )
        return ContractRecord.from_row(row) if row is not None else None

    async def list_by_creator(self, creator_address: str) -> list[ContractRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                'SELECT ' + CONTRACT_COLUMNS
                + ' FROM contracts WHERE creator_address = $1 ORDER BY created_at DESC',
                creator_address
            )
        return [ContractRecord.from_row(row) for row in rows]

    async def list_by_state(self, state: int) -> list[ContractRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                'SELECT ' + CONTRACT_COLUMNS
                + ' FROM contracts WHERE state = $1 ORDER BY created_at DESC',
                state
            )
        return [ContractRecord.from_row(row) for row in rows]

    async def update(self, contract_address: str, patch: Mapping[str, Any]) -> ContractRecord | None:
        """Apply ``patch`` in a single statement and stamp ``last_synced_at``."""
        unknown = set(patch) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f'cannot update columns: {sorted(unknown)}')

        assignments = ['updated_at = now()', 'last_synced_at = now()']
        params: list[Any] = [contract_address]
        for column in UPDATABLE_COLUMNS:
            if column not in patch:
                continue
            params.append(patch[column])
            assignments.append(f'{column} = ${len(params)}')

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'UPDATE contracts SET '
                + ', '.join(assignments)
                + ' WHERE contract_address = $1 RETURNING'
                + CONTRACT_COLUMNS,
                *params
            )
        return ContractRecord.from_row(row) if row is not None else None

    async def record_transaction(
        self,
        *,
        transaction_hash: str,
        log_index: int,
        contract_address: str,
        template_id: str,
        transaction_type: str,
        event_data: dict[str, Any],
        block_number: int,
        block_timestamp: datetime,
        from_address: str | None
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                INSERT INTO contract_transactions (
                  transaction_hash,
                  log_index,
                  contract_address,
                  template_id,
                  transaction_type,
                  event_data,
                  block_number,
                  block_timestamp,
                  from_address
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (transaction_hash, log_index) DO UPDATE SET
                  transaction_type = EXCLUDED.transaction_type,
                  event_data = EXCLUDED.event_data,
                  block_timestamp = EXCLUDED.block_timestamp,
                  from_address = EXCLUDED.from_address
                ''',
                transaction_hash,
                log_index,
                contract_address,
                template_id,
                transaction_type,
                event_data,
                block_number,
                block_timestamp,
                from_address
            )
