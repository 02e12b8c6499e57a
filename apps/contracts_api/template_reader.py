from __future__ import annotations

import asyncio
import logging
from typing import Any

from prometheus_client import Counter

from .chain import ChainReader
from .templates import StateField, TemplateDefinition, get_template

logger = logging.getLogger(__name__)

FIELD_READ_FAILURES_TOTAL = Counter(
    'civitas_field_read_failures_total',
    'On-chain state field reads that reverted or failed to decode',
    ['template_id', 'field']
)


class UnknownTemplateError(LookupError):
    def __init__(self, template_id: str | None) -> None:
        super().__init__(f'Unknown template: {template_id}')
        self.template_id = template_id


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class ContractStateReader:
    def __init__(self, chain: ChainReader) -> None:
        self.chain = chain

    async def read_state(self, contract_address: str, template_id: str | None) -> dict[str, Any]:
        """Read every state field of a template-backed contract.

        Fields are read concurrently. A field whose read reverts, errors or
        fails to decode is reported as ``None``; the snapshot always carries
        one key per state field of the template.
        """
        template = get_template(template_id)
        if template is None:
            raise UnknownTemplateError(template_id)

        results = await asyncio.gather(
            *(self._read_field(contract_address, template, field) for field in template.state_fields)
        )
        return dict(results)

    async def _read_field(
        self,
        contract_address: str,
        template: TemplateDefinition,
        field: StateField
    ) -> tuple[str, Any]:
        try:
            raw = await self.chain.read(contract_address, template.abi, field.name)
            return field.name, field.decode(raw)
        except Exception as exc:
            FIELD_READ_FAILURES_TOTAL.labels(template_id=template.id, field=field.name).inc()
            logger.warning(
                'failed to read contract field contract=%s template=%s field=%s error=%s',
                contract_address,
                template.id,
                field.name,
                _error_message(exc)
            )
            return field.name, None
