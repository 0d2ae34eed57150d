# models/risk_models.py

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field


class RiskCategory(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


class RiskWeights(BaseModel):
    tests: float = 0.7
    demo: float = 0.3

    model_config = {"frozen": True}


class RiskAssessment(BaseModel):
    test_risk: int = Field(ge=0, le=100)
    demo_risk: int = Field(ge=0, le=100)
    weights: RiskWeights = Field(default_factory=RiskWeights)
    final_risk: int = Field(ge=0, le=100)
    category: RiskCategory
    avg_test_score: float
    per_test: Dict[str, float] = Field(default_factory=dict)
    factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}
