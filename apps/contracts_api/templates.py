from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from .abis import GROUP_BUY_ESCROW_ABI, RENT_VAULT_ABI, STABLE_ALLOWANCE_TREASURY_ABI

_WORD_BOUNDARY = re.compile(r'([a-z])([A-Z])')


def decode_address(value: Any) -> str:
    return str(value).strip().lower()


def decode_uint(value: Any) -> str:
    # uint256 values exceed float precision; keep them as decimal strings.
    return str(int(value))


def decode_small_uint(value: Any) -> int:
    return int(value)


def decode_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f'expected bool, got {type(value).__name__}')
    return value


@dataclass(frozen=True)
class StateField:
    name: str
    decode: Callable[[Any], Any]


@dataclass(frozen=True)
class TemplateParam:
    name: str
    type: str
    description: str
    is_array: bool = False


@dataclass(frozen=True)
class TemplateDefinition:
    id: str
    name: str
    description: str
    factory_function_name: str
    factory_event_name: str
    abi: tuple[dict[str, Any], ...]
    params: tuple[TemplateParam, ...]
    state_fields: tuple[StateField, ...]
    roles: tuple[str, ...]

    @property
    def state_field_names(self) -> list[str]:
        return [field.name for field in self.state_fields]

    def summary(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'factory_function_name': self.factory_function_name,
            'factory_event_name': self.factory_event_name,
            'params': [
                {
                    'name': param.name,
                    'type': param.type,
                    'description': param.description,
                    'is_array': param.is_array
                }
                for param in self.params
            ],
            'state_fields': self.state_field_names,
            'roles': list(self.roles)
        }


TEMPLATES: dict[str, TemplateDefinition] = {
    'rent_vault': TemplateDefinition(
        id='rent_vault',
        name='Rent Vault',
        description=(
            'Multi-tenant rent vault. Tenants deposit their share; '
            'landlord withdraws once fully funded.'
        ),
        factory_function_name='createRentVault',
        factory_event_name='RentVaultCreated',
        abi=tuple(RENT_VAULT_ABI),
        params=(
            TemplateParam('recipient', 'address', 'Landlord/recipient address'),
            TemplateParam('rentAmount', 'uint256', 'Total rent amount (USDC, 6 decimals)'),
            TemplateParam('dueDate', 'uint256', 'Unix timestamp for rent due date'),
            TemplateParam('tenants', 'address[]', 'Tenant addresses', is_array=True),
            TemplateParam(
                'shareBps',
                'uint256[]',
                'Share basis points per tenant (must sum to 10000)',
                is_array=True
            )
        ),
        state_fields=(
            StateField('recipient', decode_address),
            StateField('rentAmount', decode_uint),
            StateField('dueDate', decode_uint),
            StateField('totalDeposited', decode_uint),
            StateField('withdrawn', decode_bool)
        ),
        roles=('recipient', 'tenant')
    ),
    'group_buy_escrow': TemplateDefinition(
        id='group_buy_escrow',
        name='Group Buy Escrow',
        description=(
            'Group purchase escrow with majority vote release. Participants fund a goal; '
            'delivery confirmed by recipient; majority vote releases funds.'
        ),
        factory_function_name='createGroupBuyEscrow',
        factory_event_name='GroupBuyEscrowCreated',
        abi=tuple(GROUP_BUY_ESCROW_ABI),
        params=(
            TemplateParam('recipient', 'address', 'Purchaser/recipient address'),
            TemplateParam('fundingGoal', 'uint256', 'Total funding goal (USDC, 6 decimals)'),
            TemplateParam('expiryDate', 'uint256', 'Unix timestamp for funding expiry'),
            TemplateParam(
                'timelockRefundDelay',
                'uint256',
                'Seconds after goal reached before timelock refund is available'
            ),
            TemplateParam('participants', 'address[]', 'Participant addresses', is_array=True),
            TemplateParam(
                'shareBps',
                'uint256[]',
                'Share basis points per participant (must sum to 10000)',
                is_array=True
            )
        ),
        state_fields=(
            StateField('recipient', decode_address),
            StateField('fundingGoal', decode_uint),
            StateField('expiryDate', decode_uint),
            StateField('timelockRefundDelay', decode_uint),
            StateField('totalDeposited', decode_uint),
            StateField('goalReachedAt', decode_uint),
            StateField('deliveryConfirmedAt', decode_uint),
            StateField('released', decode_bool),
            StateField('yesVotes', decode_uint),
            StateField('participantCount', decode_uint)
        ),
        roles=('recipient', 'participant')
    ),
    'stable_allowance_treasury': TemplateDefinition(
        id='stable_allowance_treasury',
        name='Stable Allowance Treasury',
        description=(
            'Counter-based allowance treasury. Owner approves increments; '
            'recipient claims fixed USDC amounts.'
        ),
        factory_function_name='createStableAllowanceTreasury',
        factory_event_name='TreasuryCreated',
        abi=tuple(STABLE_ALLOWANCE_TREASURY_ABI),
        params=(
            TemplateParam('owner', 'address', 'Owner/controller address (e.g., parent)'),
            TemplateParam('recipient', 'address', 'Recipient address (e.g., child)'),
            TemplateParam('allowancePerIncrement', 'uint256', 'Fixed USDC amount per claim (6 decimals)')
        ),
        state_fields=(
            StateField('owner', decode_address),
            StateField('recipient', decode_address),
            StateField('allowancePerIncrement', decode_uint),
            StateField('approvalCounter', decode_uint),
            StateField('claimedCount', decode_uint),
            StateField('state', decode_small_uint)
        ),
        roles=('owner', 'recipient')
    )
}


def canonical_template_id(template_id: str) -> str:
    """Turn a humanized id (``StableAllowanceTreasury``) into its snake_case key."""
    return _WORD_BOUNDARY.sub(r'\1_\2', template_id).lower()


def get_template(template_id: str | None) -> TemplateDefinition | None:
    if not template_id:
        return None
    template = TEMPLATES.get(template_id)
    if template is not None:
        return template
    # Older records stored the PascalCase form of the id.
    return TEMPLATES.get(canonical_template_id(template_id))


def list_templates() -> list[TemplateDefinition]:
    return list(TEMPLATES.values())
