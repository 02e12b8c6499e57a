from __future__ import annotations

import asyncio
import logging
from typing import Any

import asyncpg
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel
from web3 import AsyncWeb3

from .chain import Web3ChainReader, build_web3
from .config import get_settings
from .contract_store import ContractStore, DuplicateContractError, create_pool
from .contract_sync import ContractServiceError, ContractSyncer, normalize_address
from .event_sync import ContractEventSyncer
from .sync_scheduler import start_sync_loop, stop_sync_loop
from .template_reader import ContractStateReader
from .templates import get_template, list_templates

settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, default_response_class=ORJSONResponse)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[x.strip() for x in settings.cors_origins.split(',') if x.strip()],
    allow_credentials=False,
    allow_methods=['*'],
    allow_headers=['*']
)
app.mount('/metrics', make_asgi_app())

_pg_pool: asyncpg.Pool | None = None
_web3: AsyncWeb3 | None = None
_store: ContractStore | None = None
_syncer: ContractSyncer | None = None
_sync_task: asyncio.Task | None = None


class CreateContractRequest(BaseModel):
    template_id: str | None = None
    contract_address: str | None = None
    config: Any = None
    creator_address: str | None = None
    basename: str | None = None
    chain_id: int | None = None


def _http_error(exc: ContractServiceError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


@app.on_event('startup')
async def startup() -> None:
    global _pg_pool, _web3, _store, _syncer, _sync_task
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    _pg_pool = await create_pool(settings)
    _web3 = build_web3(settings)
    _store = ContractStore(_pg_pool)
    _syncer = ContractSyncer(
        store=_store,
        reader=ContractStateReader(Web3ChainReader(_web3)),
        event_syncer=ContractEventSyncer(_web3, _store, settings.event_sync_block_window)
    )
    if settings.contract_sync_enabled:
        _sync_task = start_sync_loop(
            _syncer,
            settings.contract_sync_interval_seconds,
            settings.contract_sync_initial_delay_seconds
        )
    else:
        logger.info('scheduled contract sync disabled')


@app.on_event('shutdown')
async def shutdown() -> None:
    global _pg_pool, _web3, _sync_task
    await stop_sync_loop(_sync_task)
    _sync_task = None
    if _web3 is not None:
        await _web3.provider.disconnect()
        _web3 = None
    if _pg_pool is not None:
        await _pg_pool.close()
        _pg_pool = None


@app.get('/health')
async def health() -> dict[str, str]:
    return {'status': 'ok'}


@app.get('/health/ready')
async def ready() -> dict[str, str]:
    assert _store is not None
    await _store.ping()
    return {'status': 'ready'}


@app.get('/templates')
async def templates() -> dict:
    return {'templates': [template.summary() for template in list_templates()]}


@app.get('/templates/{template_id}')
async def template_detail(template_id: str) -> dict:
    template = get_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f'Unknown template: {template_id}')
    return {'template': template.summary()}


@app.post('/contracts', status_code=201)
async def create_contract(req: CreateContractRequest) -> dict:
    assert _store is not None
    if not req.template_id or not req.contract_address or req.config is None or not req.creator_address:
        raise HTTPException(
            status_code=400,
            detail='template_id, contract_address, config, and creator_address are required'
        )

    template = get_template(req.template_id)
    if template is None:
        raise HTTPException(status_code=400, detail=f'Unknown template: {req.template_id}')

    try:
        contract_address = normalize_address(req.contract_address, 'contract address')
        creator_address = normalize_address(req.creator_address, 'creator address')
    except ContractServiceError as exc:
        raise _http_error(exc) from exc

    logger.info(
        'storing new contract template=%s contract=%s creator=%s',
        req.template_id,
        contract_address,
        creator_address
    )
    try:
        contract = await _store.create(
            template_id=req.template_id,
            contract_address=contract_address,
            creator_address=creator_address,
            config=req.config,
            chain_id=req.chain_id or settings.default_chain_id,
            basename=req.basename or None
        )
    except DuplicateContractError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return {'contract': contract.to_payload()}


@app.get('/contracts')
async def list_contracts(
    user_address: str | None = Query(default=None),
    creator_address: str | None = Query(default=None)
) -> dict:
    assert _store is not None
    raw_address = user_address or creator_address
    if not raw_address:
        raise HTTPException(status_code=400, detail='user_address or creator_address query parameter required')
    try:
        address = normalize_address(raw_address, 'address format')
    except ContractServiceError as exc:
        raise _http_error(exc) from exc

    contracts = await _store.list_by_creator(address)
    return {'contracts': [contract.to_payload() for contract in contracts]}


@app.get('/contracts/{address}')
async def contract_detail(address: str) -> dict:
    assert _store is not None
    try:
        contract_address = normalize_address(address, 'contract address')
    except ContractServiceError as exc:
        raise _http_error(exc) from exc

    contract = await _store.get_by_address(contract_address)
    if contract is None:
        raise HTTPException(status_code=404, detail='Contract not found')
    return {'contract': contract.to_payload()}


@app.patch('/contracts/{address}/sync')
async def sync_contract(address: str) -> dict:
    assert _syncer is not None
    try:
        result = await _syncer.manual_sync(address)
    except ContractServiceError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        logger.exception('manual contract sync failed contract=%s', address)
        raise HTTPException(status_code=500, detail='Failed to sync contract') from exc
    return {'contract': result.contract.to_payload()}


@app.get('/')
async def root() -> dict:
    return {'service': settings.app_name, 'status': 'ok', 'network': settings.network_mode}
