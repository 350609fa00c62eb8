"""
Execution batch construction.

For each allocation entry, in plan order:

    token.approve(vault, amount)
    vault.deposit(amount)

with amount = floor(balance * bps / 10000). Floor rounding may leave up to
(entries - 1) units in the account; that remainder is not redistributed.
"""

from __future__ import annotations

from typing import List, Tuple

from bondflow.chain import abi
from bondflow.protocol.models import (
    BPS_DENOMINATOR,
    AllocationEntry,
    AllocationPlan,
    ExecutionBatch,
    SubCall,
)
from bondflow.protocol.errors import ValidationError
from bondflow.protocol.validators import checksum, validate_plan


def allocate(balance: int, plan: AllocationPlan) -> List[Tuple[AllocationEntry, int]]:
    if balance < 0:
        raise ValidationError(f"Balance must be non-negative, got {balance}")
    return [(entry, balance * entry.bps // BPS_DENOMINATOR) for entry in plan.entries]


class BatchBuilder:
    def __init__(self, token: str) -> None:
        self._token = checksum(token)

    def build(self, balance: int, plan: AllocationPlan) -> ExecutionBatch:
        validate_plan(plan)

        calls: List[SubCall] = []
        amounts: List[Tuple[str, int]] = []
        for entry, amount in allocate(balance, plan):
            vault = checksum(entry.vault)
            calls.append(SubCall(self._token, 0, abi.APPROVE.encode(vault, amount)))
            calls.append(SubCall(vault, 0, abi.DEPOSIT.encode(amount)))
            amounts.append((entry.label, amount))

        return ExecutionBatch(calls=tuple(calls), amounts=tuple(amounts))
