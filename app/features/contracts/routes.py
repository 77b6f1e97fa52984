"""
On-demand contract checks.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.contracts.schemas import ContractAction, ContractCheckRequest, ContractCheckResponse
from app.features.permissions.dependencies import require_permission
from app.features.permissions.evaluator import Principal
from app.features.users.lifecycle import activate_pending_users, check_and_deactivate_expired_contracts


router = APIRouter(tags=["contracts"])


@router.post("/", response_model=ContractCheckResponse)
async def run_contract_checks(
    data: ContractCheckRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:update"))]
):
    """Run the expired-contract sweep, the pending-activation sweep, or both."""
    if data.action == ContractAction.CHECK_EXPIRED_CONTRACTS:
        expired = await check_and_deactivate_expired_contracts(db)
        await db.commit()
        return ContractCheckResponse(
            message=f"Contract expiration check completed. {expired['deactivated_count']} users deactivated.",
            deactivated_count=expired["deactivated_count"],
            deactivated_user_ids=expired["user_ids"],
        )

    if data.action == ContractAction.ACTIVATE_PENDING_USERS:
        pending = await activate_pending_users(db)
        await db.commit()
        return ContractCheckResponse(
            message=f"Pending user activation check completed. {pending['activated_count']} users activated.",
            activated_count=pending["activated_count"],
            activated_user_ids=pending["user_ids"],
        )

    expired = await check_and_deactivate_expired_contracts(db)
    pending = await activate_pending_users(db)
    await db.commit()
    return ContractCheckResponse(
        message=(
            f"All contract checks completed. {expired['deactivated_count']} users deactivated, "
            f"{pending['activated_count']} users activated."
        ),
        activated_count=pending["activated_count"],
        activated_user_ids=pending["user_ids"],
        deactivated_count=expired["deactivated_count"],
        deactivated_user_ids=expired["user_ids"],
    )
