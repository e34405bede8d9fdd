"""
storyline/models/usage.py

Usage gate models. Limits use -1 for unlimited.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


UNLIMITED = -1


class UsageType(str, Enum):
    BEHAVIORAL = "behavioral"
    QUESTION_VAULT = "question_vault"


class UsageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    usage_key: str
    occurred_at: datetime
    metadata: Optional[Dict[str, Any]] = None


class UsageCheck(BaseModel):
    """
    Advisory gate state for one usage type in the current calendar month.

    `blocked` only drives the "wait for next cycle / upgrade" prompt; nothing
    on the write path consults it.
    """
    model_config = ConfigDict(frozen=True)

    usage_type: UsageType
    count: int
    limit: int
    remaining: int
    blocked: bool
    is_premium: bool
    month_year: str
    message: Optional[str] = None


class UsageSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    month_year: str
    is_premium: bool
    behavioral: UsageCheck
    question_vault: UsageCheck
