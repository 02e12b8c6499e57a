import unittest

from apps.contracts_api.contract_sync import ContractServiceError, ContractSyncer
from apps.contracts_api.template_reader import ContractStateReader
from apps.contracts_api.tests.fakes import (
    FakeChainReader,
    FakeEventSyncer,
    FakeStateReader,
    InMemoryContractStore,
    address,
    make_record
)

SNAPSHOT = {
    'recipient': '0x0000000000000000000000000000000000000abc',
    'rentAmount': '1000',
    'dueDate': '1767225600',
    'totalDeposited': '250',
    'withdrawn': False
}


class ScheduledSyncTests(unittest.IsolatedAsyncioTestCase):
    async def test_one_failing_contract_does_not_block_others(self) -> None:
        failing = address(2)
        store = InMemoryContractStore(
            [
                make_record(address(1)),
                make_record(failing, 'group_buy_escrow', chain_id=8453),
                make_record(address(3), 'stable_allowance_treasury'),
                make_record(address(4), state=2)
            ]
        )
        reader = FakeStateReader(SNAPSHOT, failing={failing: TimeoutError('rpc timeout')})
        syncer = ContractSyncer(store, reader)

        with self.assertLogs('apps.contracts_api.contract_sync', level='INFO') as logs:
            summary = await syncer.run_scheduled_sync()

        self.assertEqual(summary.candidates, 3)
        self.assertEqual(summary.succeeded, 2)
        self.assertEqual(summary.failed, 1)
        self.assertFalse(summary.aborted)

        self.assertIsNotNone(store.records[address(1)].last_synced_at)
        self.assertIsNotNone(store.records[address(3)].last_synced_at)
        self.assertEqual(store.records[address(1)].on_chain_state, SNAPSHOT)
        self.assertIsNone(store.records[failing].last_synced_at)
        self.assertIsNone(store.records[failing].on_chain_state)
        # terminal contracts are never touched by the scheduled path
        self.assertIsNone(store.records[address(4)].last_synced_at)
        self.assertNotIn(address(4), [addr for addr, _ in reader.calls])

        errors = [line for line in logs.output if line.startswith('ERROR')]
        self.assertEqual(len(errors), 1)
        self.assertIn(f'contract={failing}', errors[0])
        self.assertIn('template=group_buy_escrow', errors[0])
        self.assertIn('chain_id=8453', errors[0])
        self.assertIn('rpc timeout', errors[0])
        self.assertTrue(any('succeeded=2 failed=1' in line for line in logs.output))

    async def test_empty_candidate_set_is_a_noop(self) -> None:
        store = InMemoryContractStore([make_record(address(1), state=1)])
        reader = FakeStateReader(SNAPSHOT)
        syncer = ContractSyncer(store, reader)

        with self.assertNoLogs('apps.contracts_api.contract_sync', level='ERROR'):
            summary = await syncer.run_scheduled_sync()

        self.assertEqual((summary.candidates, summary.succeeded, summary.failed), (0, 0, 0))
        self.assertEqual(reader.calls, [])

    async def test_store_unreachable_ends_run_without_raising(self) -> None:
        store = InMemoryContractStore([make_record(address(1))])
        store.list_error = ConnectionRefusedError('postgres down')
        syncer = ContractSyncer(store, FakeStateReader(SNAPSHOT))

        with self.assertLogs('apps.contracts_api.contract_sync', level='ERROR') as logs:
            summary = await syncer.run_scheduled_sync()

        self.assertTrue(summary.aborted)
        self.assertIn('catastrophically', logs.output[0])

    async def test_store_write_failure_counts_as_failed_contract(self) -> None:
        store = InMemoryContractStore([make_record(address(1)), make_record(address(2))])
        store.update_errors[address(2)] = RuntimeError('write failed')
        syncer = ContractSyncer(store, FakeStateReader(SNAPSHOT))

        with self.assertLogs('apps.contracts_api.contract_sync', level='ERROR'):
            summary = await syncer.run_scheduled_sync()

        self.assertEqual((summary.succeeded, summary.failed), (1, 1))
        self.assertIsNone(store.records[address(2)].on_chain_state)

    async def test_snapshot_with_failed_fields_is_written_whole(self) -> None:
        chain = FakeChainReader(
            {'recipient': address(7), 'rentAmount': 10, 'dueDate': 20, 'totalDeposited': 5},
            failures={'withdrawn': RuntimeError('execution reverted')}
        )
        store = InMemoryContractStore([make_record(address(1))])
        syncer = ContractSyncer(store, ContractStateReader(chain))

        with self.assertLogs('apps.contracts_api.template_reader', level='WARNING'):
            summary = await syncer.run_scheduled_sync()

        self.assertEqual(summary.succeeded, 1)
        self.assertEqual(
            store.records[address(1)].on_chain_state,
            {
                'recipient': address(7),
                'rentAmount': '10',
                'dueDate': '20',
                'totalDeposited': '5',
                'withdrawn': None
            }
        )

    async def test_repeated_runs_converge_on_same_snapshot(self) -> None:
        chain = FakeChainReader(
            {'recipient': address(7), 'rentAmount': 10, 'dueDate': 20, 'totalDeposited': 5, 'withdrawn': True}
        )
        store = InMemoryContractStore([make_record(address(1))])
        syncer = ContractSyncer(store, ContractStateReader(chain))

        await syncer.run_scheduled_sync()
        first = store.records[address(1)].on_chain_state
        await syncer.run_scheduled_sync()

        self.assertEqual(store.records[address(1)].on_chain_state, first)

    async def test_sync_does_not_rewrite_record_state(self) -> None:
        chain = FakeChainReader(
            {
                'owner': address(10),
                'recipient': address(11),
                'allowancePerIncrement': 1,
                'approvalCounter': 0,
                'claimedCount': 0,
                'state': 2
            }
        )
        store = InMemoryContractStore([make_record(address(1), 'stable_allowance_treasury')])
        syncer = ContractSyncer(store, ContractStateReader(chain))

        record = await syncer.sync_contract(address(1))

        self.assertEqual(record.state, 0)
        self.assertEqual(record.on_chain_state['state'], 2)


class ManualSyncTests(unittest.IsolatedAsyncioTestCase):
    async def test_returns_synced_record_and_cascades_to_events(self) -> None:
        store = InMemoryContractStore([make_record(address(0xABCDEF))])
        events = FakeEventSyncer(count=4)
        syncer = ContractSyncer(store, FakeStateReader(SNAPSHOT), events)

        result = await syncer.manual_sync('0x' + address(0xABCDEF)[2:].upper())

        self.assertEqual(result.contract.on_chain_state, SNAPSHOT)
        self.assertEqual(result.events_synced, 4)
        self.assertEqual(events.calls, [(address(0xABCDEF), 'rent_vault')])

    async def test_event_sync_failure_is_absorbed(self) -> None:
        store = InMemoryContractStore([make_record(address(1))])
        events = FakeEventSyncer(error=ConnectionError('getLogs failed'))
        syncer = ContractSyncer(store, FakeStateReader(SNAPSHOT), events)

        with self.assertLogs('apps.contracts_api.contract_sync', level='ERROR') as logs:
            result = await syncer.manual_sync(address(1))

        self.assertEqual(result.contract.on_chain_state, SNAPSHOT)
        self.assertIsNotNone(result.contract.last_synced_at)
        self.assertEqual(result.event_sync_error, 'getLogs failed')
        self.assertIn('failed to sync events', logs.output[0])

    async def test_unresolvable_template_skips_event_sync(self) -> None:
        store = InMemoryContractStore([make_record(address(1), 'legacy_rental')])
        events = FakeEventSyncer()
        syncer = ContractSyncer(store, FakeStateReader(SNAPSHOT), events)

        result = await syncer.manual_sync(address(1))

        self.assertEqual(result.contract.on_chain_state, SNAPSHOT)
        self.assertEqual(events.calls, [])
        self.assertIsNone(result.events_synced)

    async def test_rejects_malformed_address(self) -> None:
        syncer = ContractSyncer(InMemoryContractStore(), FakeStateReader(SNAPSHOT))

        for bad in ('0x123', 'abc', '0x' + 'g' * 40, ''):
            with self.assertRaises(ContractServiceError) as ctx:
                await syncer.manual_sync(bad)
            self.assertEqual(ctx.exception.status_code, 400)

    async def test_missing_contract_is_not_found(self) -> None:
        syncer = ContractSyncer(InMemoryContractStore(), FakeStateReader(SNAPSHOT))

        with self.assertRaises(ContractServiceError) as ctx:
            await syncer.manual_sync(address(5))
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_unknown_template_with_chain_reader_returns_current_record(self) -> None:
        store = InMemoryContractStore([make_record(address(1), 'legacy_rental')])
        chain = FakeChainReader({})
        events = FakeEventSyncer()
        syncer = ContractSyncer(store, ContractStateReader(chain), events)

        with self.assertLogs('apps.contracts_api.contract_sync', level='WARNING') as logs:
            result = await syncer.manual_sync(address(1))

        self.assertEqual(result.contract, store.records[address(1)])
        self.assertIsNone(result.contract.last_synced_at)
        self.assertEqual(chain.calls, [])
        self.assertEqual(events.calls, [])
        self.assertTrue(any('template=legacy_rental' in line for line in logs.output))
