"""
Beneficial owners mixin for VerificationWorkflow (KYB only).
"""

from exceptions import InvalidState, ValidationError
from logger import get_logger
from models import BeneficialOwner, VerificationKind
from utilities.beneficial_ownership import derive_ubo_flags, ownership_coverage, validate_owner
from workflow_transitions import MUTABLE_STATUSES

logger = get_logger(__name__)


class OwnersMixin:
    """Mixin providing owner registration and the ownership coverage view."""

    async def add_owner(self, case_id: str, owner: BeneficialOwner) -> BeneficialOwner:
        """
        Register a beneficial owner on a KYB case.

        UBO flags are recomputed for every owner afterwards. A rejected owner
        leaves the existing owners exactly as they were.
        """
        async with self._operation("add_owner", case_id), self._lock(case_id):
            case = self._load(case_id)
            if case.kind != VerificationKind.KYB:
                raise ValidationError("Beneficial owners apply to KYB cases only", case_id)
            if case.status not in MUTABLE_STATUSES:
                raise InvalidState(case.status.value, "add owners", case_id)

            validate_owner(owner, case.active_owners, case_id)

            added = owner.model_copy(deep=True)
            added.added_at = self.clock()
            case.beneficial_owners.append(added)
            ubo_count = derive_ubo_flags(case.beneficial_owners, self.config.ubo_threshold)
            self._refresh_stage(case)

            logger.info(
                f"Case {case_id}: added owner {added.display_name} "
                f"({added.ownership_percentage:g}%, UBO={added.is_ultimate_beneficial_owner})"
            )
            self._commit(case, [("kyb.ubo.added", {
                "owner_id": added.owner_id,
                "owner_type": added.owner_type.value,
                "ownership_percentage": added.ownership_percentage,
                "is_ultimate_beneficial_owner": added.is_ultimate_beneficial_owner,
                "ubo_count": ubo_count,
                "total_ownership": case.total_ownership,
            })])
            return added

    def get_ownership_coverage(self, case_id: str) -> dict:
        case = self._load(case_id)
        return ownership_coverage(
            case.beneficial_owners,
            self.config.ubo_threshold,
            self.config.min_ownership_coverage,
        )
