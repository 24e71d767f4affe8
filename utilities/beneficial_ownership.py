"""
Beneficial ownership helpers for KYB cases.

The UBO flag is derived, never authoritative: it is recomputed for every
owner whenever ownership changes.
"""

from exceptions import InvalidOwner, OwnershipExceeded
from models import BeneficialOwner, OwnerType

MAX_TOTAL_OWNERSHIP = 100.0


def is_ultimate_beneficial_owner(owner: BeneficialOwner, threshold: float = 25.0) -> bool:
    return owner.ownership_percentage >= threshold or owner.control_percentage >= threshold


def derive_ubo_flags(owners: list[BeneficialOwner], threshold: float = 25.0) -> int:
    """Recompute is_ultimate_beneficial_owner on every owner. Returns the UBO count."""
    count = 0
    for owner in owners:
        owner.is_ultimate_beneficial_owner = owner.is_active and is_ultimate_beneficial_owner(owner, threshold)
        count += owner.is_ultimate_beneficial_owner
    return count


def has_required_ubos(owners: list[BeneficialOwner], threshold: float = 25.0) -> bool:
    return any(o.is_active and is_ultimate_beneficial_owner(o, threshold) for o in owners)


def validate_owner(owner: BeneficialOwner, existing: list[BeneficialOwner], case_id: str = None):
    """
    Validate a new owner against the case's active owners.

    Raises:
        InvalidOwner: percentages out of range or variant fields missing
        OwnershipExceeded: total active ownership would pass 100%
    """
    if not (0 < owner.ownership_percentage <= 100):
        raise InvalidOwner("Ownership percentage must be greater than 0 and at most 100", case_id)
    if not (0 <= owner.control_percentage <= 100):
        raise InvalidOwner("Control percentage must be between 0 and 100", case_id)
    if not owner.display_name:
        raise InvalidOwner("Beneficial owner name is required", case_id)

    if owner.owner_type == OwnerType.INDIVIDUAL:
        missing = [
            name for name, value in (
                ("first_name", owner.first_name),
                ("last_name", owner.last_name),
                ("date_of_birth", owner.date_of_birth),
                ("nationality", owner.nationality),
            ) if not value
        ]
    else:
        missing = [
            name for name, value in (
                ("entity_name", owner.entity_name),
                ("entity_type", owner.entity_type),
                ("jurisdiction", owner.jurisdiction),
            ) if not value
        ]
    if missing:
        raise InvalidOwner(f"{owner.owner_type.value} owner is missing: {', '.join(missing)}", case_id)

    total = sum(o.ownership_percentage for o in existing if o.is_active) + owner.ownership_percentage
    if total > MAX_TOTAL_OWNERSHIP:
        raise OwnershipExceeded(total, case_id)


def ownership_coverage(owners: list[BeneficialOwner], threshold: float = 25.0, min_coverage: float = 75.0) -> dict:
    """
    Coverage report for the declared ownership structure.

    Returns dict with:
        total_ownership: float
        owner_count / ubo_count: int
        errors / warnings: list of str
        coverage_complete: bool - no errors and total >= min_coverage
    """
    active = [o for o in owners if o.is_active]
    total = sum(o.ownership_percentage for o in active)
    ubo_count = sum(1 for o in active if is_ultimate_beneficial_owner(o, threshold))

    errors = []
    warnings = []
    if total > MAX_TOTAL_OWNERSHIP:
        errors.append(f"Total ownership is {total:g}%, exceeds 100%")
    elif total < MAX_TOTAL_OWNERSHIP:
        warnings.append(f"Total ownership is {total:g}%, less than 100%")
    if ubo_count == 0:
        errors.append("No ultimate beneficial owners identified")

    return {
        "total_ownership": total,
        "owner_count": len(active),
        "ubo_count": ubo_count,
        "errors": errors,
        "warnings": warnings,
        "coverage_complete": not errors and total >= min_coverage,
    }
