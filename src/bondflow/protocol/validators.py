from eth_utils import is_hex_address, to_checksum_address

from .models import AllocationPlan, BPS_DENOMINATOR
from .errors import ValidationError


def checksum(address: str) -> str:
    # mixed-case input is normalized rather than checksum-verified
    if not isinstance(address, str) or not is_hex_address(address):
        raise ValidationError(f"Not an address: {address!r}")
    return to_checksum_address(address.lower())


def validate_plan(plan: AllocationPlan) -> None:
    if not plan.entries:
        raise ValidationError("Allocation plan must have at least one entry")
    labels = [e.label for e in plan.entries]
    if len(set(labels)) != len(labels):
        raise ValidationError(f"Duplicate labels in allocation plan: {labels}")
    for e in plan.entries:
        if e.bps <= 0:
            raise ValidationError(f"Share for {e.label!r} must be positive, got {e.bps}")
        checksum(e.vault)
    if plan.total_bps != BPS_DENOMINATOR:
        raise ValidationError(
            f"Allocation shares must sum to {BPS_DENOMINATOR} bps, got {plan.total_bps}"
        )


def validate_cap(cap_bps: int) -> None:
    if not 0 < cap_bps <= BPS_DENOMINATOR:
        raise ValidationError(f"Cap must be within (0, {BPS_DENOMINATOR}] bps, got {cap_bps}")
