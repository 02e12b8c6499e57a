from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from prometheus_client import Counter
from web3 import AsyncWeb3, Web3

from .contract_store import ContractStore
from .templates import get_template

logger = logging.getLogger(__name__)

EVENT_LOGS_SYNCED_TOTAL = Counter(
    'civitas_event_logs_synced_total',
    'Contract event logs decoded and stored',
    ['template_id']
)

# event name -> (transaction type, argument names that identify the initiator)
EVENT_TRANSACTION_TYPES: dict[str, tuple[str, tuple[str, ...]]] = {
    'Deposited': ('deposit', ('from', 'tenant', 'participant', 'depositor', 'sender')),
    'Withdrawn': ('withdrawal', ('recipient', 'owner', 'to')),
    'WithdrawnToLandlord': ('withdrawal', ('landlord',)),
    'Refunded': ('refund', ('tenant', 'participant', 'recipient')),
    'Claimed': ('claim', ('recipient',)),
    'AllowanceClaimed': ('claim', ('recipient',)),
    'ApprovalIncremented': ('approval', ('owner',)),
    'EmergencyWithdrawal': ('withdrawal', ('to',)),
    'GoalReached': ('goal_reached', ()),
    'RentFullyFunded': ('goal_reached', ()),
    'FundsReleased': ('funds_released', ('purchaser',)),
    'DeliveryConfirmed': ('delivery_confirmed', ('recipient',)),
    'VoteCast': ('vote', ('participant',)),
    'TimelockRefund': ('refund', ('participant',)),
    'StateChanged': ('state_change', ())
}


def _hex_prefixed(value: Any) -> str:
    raw = value.hex() if hasattr(value, 'hex') else str(value)
    if raw.startswith('0x'):
        return raw
    return f'0x{raw}'


def event_topic(event_abi: Mapping[str, Any]) -> str:
    arg_types = ','.join(str(item['type']) for item in event_abi.get('inputs', []))
    return _hex_prefixed(Web3.keccak(text=f"{event_abi['name']}({arg_types})")).lower()


def classify_event(event_name: str, args: Mapping[str, Any]) -> tuple[str, str | None]:
    transaction_type, initiator_keys = EVENT_TRANSACTION_TYPES.get(event_name, ('interaction', ()))
    for key in initiator_keys:
        value = args.get(key)
        if value:
            return transaction_type, str(value).lower()
    return transaction_type, None


def normalize_event_args(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return _hex_prefixed(bytes(value))
    if isinstance(value, Mapping):
        return {str(key): normalize_event_args(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_event_args(item) for item in value]
    return value


class ContractEventSyncer:
    def __init__(self, web3: AsyncWeb3, store: ContractStore, block_window: int) -> None:
        self.web3 = web3
        self.store = store
        self.block_window = block_window

    async def sync_contract_events(self, contract_address: str, template_id: str) -> int:
        template = get_template(template_id)
        if template is None:
            logger.warning('unknown template for event sync template=%s contract=%s', template_id, contract_address)
            return 0

        try:
            address = Web3.to_checksum_address(contract_address)
            contract = self.web3.eth.contract(address=address, abi=list(template.abi))
            events_by_topic = {
                event_topic(item): str(item['name'])
                for item in template.abi
                if item.get('type') == 'event'
            }

            current_block = await self.web3.eth.block_number
            from_block = max(0, current_block - self.block_window)
            logger.info(
                'starting event sync contract=%s template=%s from_block=%s to_block=%s',
                contract_address,
                template.id,
                from_block,
                current_block
            )

            logs = await self.web3.eth.get_logs(
                {'address': address, 'fromBlock': from_block, 'toBlock': current_block}
            )

            block_ts_cache: dict[int, datetime] = {}
            recorded = 0
            for log in logs:
                topics = log.get('topics') or []
                event_name = events_by_topic.get(_hex_prefixed(topics[0]).lower()) if topics else None
                if event_name is None:
                    logger.warning(
                        'failed to decode event log contract=%s tx_hash=%s log_index=%s error=no matching event',
                        contract_address,
                        _hex_prefixed(log['transactionHash']),
                        log['logIndex']
                    )
                    continue
                try:
                    decoded = getattr(contract.events, event_name)().process_log(log)
                except Exception as exc:
                    logger.warning(
                        'failed to decode event log contract=%s tx_hash=%s log_index=%s error=%s',
                        contract_address,
                        _hex_prefixed(log['transactionHash']),
                        log['logIndex'],
                        exc
                    )
                    continue

                try:
                    await self._record_event(
                        contract_address=contract_address.lower(),
                        template_id=template.id,
                        event_name=event_name,
                        args=dict(decoded['args']),
                        log=log,
                        block_ts_cache=block_ts_cache
                    )
                except Exception as exc:
                    logger.warning(
                        'failed to store event log contract=%s tx_hash=%s log_index=%s error=%s',
                        contract_address,
                        _hex_prefixed(log['transactionHash']),
                        log['logIndex'],
                        exc
                    )
                    continue
                recorded += 1

            EVENT_LOGS_SYNCED_TOTAL.labels(template_id=template.id).inc(recorded)
            logger.info(
                'event sync completed contract=%s logs=%s recorded=%s',
                contract_address,
                len(logs),
                recorded
            )
            return recorded
        except Exception:
            logger.exception('error syncing contract events contract=%s', contract_address)
            raise

    async def _record_event(
        self,
        *,
        contract_address: str,
        template_id: str,
        event_name: str,
        args: dict[str, Any],
        log: Mapping[str, Any],
        block_ts_cache: dict[int, datetime]
    ) -> None:
        transaction_hash = _hex_prefixed(log['transactionHash'])
        transaction_type, from_address = classify_event(event_name, args)

        if from_address is None:
            try:
                tx = await self.web3.eth.get_transaction(log['transactionHash'])
                from_address = str(tx['from']).lower()
            except Exception as exc:
                logger.warning('failed to fetch tx sender tx_hash=%s error=%s', transaction_hash, exc)

        block_number = int(log['blockNumber'])
        block_ts = block_ts_cache.get(block_number)
        if block_ts is None:
            block = await self.web3.eth.get_block(block_number)
            block_ts = datetime.fromtimestamp(int(block['timestamp']), tz=timezone.utc)
            block_ts_cache[block_number] = block_ts

        await self.store.record_transaction(
            transaction_hash=transaction_hash,
            log_index=int(log['logIndex']),
            contract_address=contract_address,
            template_id=template_id,
            transaction_type=transaction_type,
            event_data={'eventName': event_name, 'args': normalize_event_args(args)},
            block_number=block_number,
            block_timestamp=block_ts,
            from_address=from_address
        )
        logger.info(
            'stored contract event contract=%s event=%s type=%s tx_hash=%s',
            contract_address,
            event_name,
            transaction_type,
            transaction_hash
        )
