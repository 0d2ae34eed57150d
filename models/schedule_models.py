# models/schedule_models.py

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from models.cognitive_models import TestType


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"


class ScheduleCreate(BaseModel):
    test_type: TestType
    scheduled_date: date
    scheduled_time: Optional[str] = None
    frequency: Frequency = Frequency.WEEKLY
    notes: Optional[str] = None


class ScheduleUpdate(BaseModel):
    test_type: Optional[TestType] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    frequency: Optional[Frequency] = None
    status: Optional[str] = None
    notes: Optional[str] = None
