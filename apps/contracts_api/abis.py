from __future__ import annotations

from typing import Any


def _view(name: str, output_type: str, internal_type: str | None = None) -> dict[str, Any]:
    return {
        'inputs': [],
        'name': name,
        'outputs': [{'internalType': internal_type or output_type, 'name': '', 'type': output_type}],
        'stateMutability': 'view',
        'type': 'function'
    }


def _event(name: str, *inputs: tuple[str, str, bool]) -> dict[str, Any]:
    return {
        'anonymous': False,
        'inputs': [
            {'indexed': indexed, 'internalType': arg_type, 'name': arg_name, 'type': arg_type}
            for arg_name, arg_type, indexed in inputs
        ],
        'name': name,
        'type': 'event'
    }


RENT_VAULT_ABI = [
    _view('recipient', 'address'),
    _view('rentAmount', 'uint256'),
    _view('dueDate', 'uint256'),
    _view('totalDeposited', 'uint256'),
    _view('withdrawn', 'bool'),
    _event(
        'Deposited',
        ('tenant', 'address', True),
        ('amount', 'uint256', False),
        ('totalDeposited', 'uint256', False)
    ),
    _event('RentFullyFunded', ('totalDeposited', 'uint256', False)),
    _event('WithdrawnToLandlord', ('landlord', 'address', True), ('amount', 'uint256', False)),
    _event('Refunded', ('tenant', 'address', True), ('amount', 'uint256', False))
]

GROUP_BUY_ESCROW_ABI = [
    _view('recipient', 'address'),
    _view('fundingGoal', 'uint256'),
    _view('expiryDate', 'uint256'),
    _view('timelockRefundDelay', 'uint256'),
    _view('totalDeposited', 'uint256'),
    _view('goalReachedAt', 'uint256'),
    _view('deliveryConfirmedAt', 'uint256'),
    _view('released', 'bool'),
    _view('yesVotes', 'uint256'),
    _view('participantCount', 'uint256'),
    _event(
        'Deposited',
        ('participant', 'address', True),
        ('amount', 'uint256', False),
        ('totalDeposited', 'uint256', False)
    ),
    _event('GoalReached', ('totalDeposited', 'uint256', False), ('timestamp', 'uint256', False)),
    _event('Refunded', ('participant', 'address', True), ('amount', 'uint256', False)),
    _event(
        'DeliveryConfirmed',
        ('recipient', 'address', True),
        ('proof', 'string', False),
        ('timestamp', 'uint256', False)
    ),
    _event('VoteCast', ('participant', 'address', True), ('yesVotes', 'uint256', False)),
    _event('FundsReleased', ('purchaser', 'address', True), ('amount', 'uint256', False)),
    _event('TimelockRefund', ('participant', 'address', True), ('amount', 'uint256', False))
]

STABLE_ALLOWANCE_TREASURY_ABI = [
    _view('owner', 'address'),
    _view('recipient', 'address'),
    _view('allowancePerIncrement', 'uint256'),
    _view('approvalCounter', 'uint256'),
    _view('claimedCount', 'uint256'),
    _view('state', 'uint8', 'enum StableAllowanceTreasury.State'),
    _event(
        'ApprovalIncremented',
        ('owner', 'address', True),
        ('newApprovalCount', 'uint256', False),
        ('incrementAmount', 'uint256', False)
    ),
    _event(
        'AllowanceClaimed',
        ('recipient', 'address', True),
        ('amount', 'uint256', False),
        ('claimNumber', 'uint256', False)
    ),
    _event(
        'Deposited',
        ('from', 'address', True),
        ('amount', 'uint256', False),
        ('newBalance', 'uint256', False)
    ),
    _event('StateChanged', ('oldState', 'uint8', False), ('newState', 'uint8', False)),
    _event('EmergencyWithdrawal', ('to', 'address', True), ('amount', 'uint256', False))
]
