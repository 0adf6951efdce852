"""
Claim Resolution Engine - API Usage Metering

Records model token usage for billing visibility. Metering is a side
effect: a failure here is logged and rolled back, never raised.
"""
from __future__ import annotations
import logging
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import APICallType, APIUsageLogDB
from ..llm import ChatResponse

logger = logging.getLogger(__name__)

# USD per million tokens
INPUT_COST_PER_MILLION = 3.00
OUTPUT_COST_PER_MILLION = 15.00


def estimate_cost(prompt_tokens: int, completion_tokens: int) -> float:
    cost = (prompt_tokens / 1_000_000) * INPUT_COST_PER_MILLION
    cost += (completion_tokens / 1_000_000) * OUTPUT_COST_PER_MILLION
    return round(cost, 6)


class UsageMeter:
    def __init__(self, db_session: Session):
        self.db = db_session

    def record(
        self,
        call_type: APICallType,
        response: ChatResponse,
        org_id: Optional[str],
        audit_report_id: Optional[str] = None,
    ) -> Optional[APIUsageLogDB]:
        """Write one usage row in its own commit. Returns None on failure."""
        try:
            row = APIUsageLogDB(
                id=str(uuid4()),
                organization_id=org_id,
                audit_report_id=audit_report_id,
                api_call_type=call_type.value,
                model=response.model,
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
                total_tokens=response.total_tokens,
                estimated_cost=estimate_cost(response.prompt_tokens, response.completion_tokens),
            )
            self.db.add(row)
            self.db.commit()
            return row
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Failed to log API usage ({call_type.value}) for report {audit_report_id}: {e}"
            )
            return None
