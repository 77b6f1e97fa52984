"""
Pydantic schemas for contract checks.
"""
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel


class ContractAction(str, Enum):
    CHECK_EXPIRED_CONTRACTS = "check_expired_contracts"
    ACTIVATE_PENDING_USERS = "activate_pending_users"
    RUN_ALL_CHECKS = "run_all_checks"


class ContractCheckRequest(BaseModel):
    action: ContractAction


class ContractCheckResponse(BaseModel):
    message: str
    activated_count: Optional[int] = None
    activated_user_ids: List[str] = []
    deactivated_count: Optional[int] = None
    deactivated_user_ids: List[str] = []
