# services/risk_service.py
"""Blend test performance with demographic factors into a 0-100 risk score.

This is a heuristic, not a diagnosis. ``compute_risk`` is pure: the same
scores and profile always give the same assessment.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from models.risk_models import RiskAssessment, RiskCategory, RiskWeights
from models.user_model import UserProfile
from services.errors import ValidationError
from services.scoring_service import MAX_SCORE, clamp, round_half_up, to_decimal

WEIGHTS = RiskWeights(tests=0.7, demo=0.3)

FAMILY_HISTORY_BONUS = 20
# Reserved: no symptom data is collected, so this never contributes
MEMORY_SYMPTOMS_BONUS = 0

# (minimum age, points, label), checked top-down
AGE_BANDS: Tuple[Tuple[int, int, str], ...] = (
    (75, 30, "Age 75+"),
    (65, 20, "Age 65-74"),
    (60, 12, "Age 60-64"),
)

HIGH_RISK_THRESHOLD = 50
MODERATE_RISK_THRESHOLD = 20

RECOMMENDATIONS: Dict[RiskCategory, List[str]] = {
    RiskCategory.HIGH: [
        "Schedule appointment with neurologist or geriatrician",
        "Consult healthcare provider for comprehensive evaluation",
    ],
    RiskCategory.MODERATE: [
        "Regular monitoring every 3-6 months",
        "Focus on lifestyle modifications",
    ],
    RiskCategory.LOW: [
        "Continue healthy lifestyle habits",
        "Annual cognitive assessment sufficient",
    ],
}


def age_factor(age: Optional[int]) -> int:
    for min_age, points, _ in AGE_BANDS:
        if (age or 0) >= min_age:
            return points
    return 0


def has_family_history(family_history: Optional[str]) -> bool:
    text = (family_history or "").strip()
    return bool(text) and text.lower() != "none"


def risk_category(final_risk: float) -> RiskCategory:
    if final_risk >= HIGH_RISK_THRESHOLD:
        return RiskCategory.HIGH
    if final_risk >= MODERATE_RISK_THRESHOLD:
        return RiskCategory.MODERATE
    return RiskCategory.LOW


def _factor_labels(profile: UserProfile, avg_test_score: float) -> List[str]:
    factors = []
    for min_age, _, label in AGE_BANDS:
        if (profile.age or 0) >= min_age:
            factors.append(label)
            break
    if has_family_history(profile.family_history):
        factors.append("Family history of dementia")

    if avg_test_score < 4:
        factors.append("Low cognitive test performance")
    elif avg_test_score <= 7:
        factors.append("Moderate cognitive test performance")
    else:
        factors.append("Good cognitive test performance")
    return factors


def compute_risk(
    scores: Sequence[float],
    profile: UserProfile,
    per_test: Optional[Dict[str, float]] = None,
) -> RiskAssessment:
    if not scores:
        raise ValidationError("At least one test score is required to compute risk")

    total = sum((to_decimal(s) for s in scores), Decimal(0))
    avg_test_score = clamp(total / len(scores), Decimal(0), Decimal(MAX_SCORE))
    test_risk = int(round_half_up((1 - avg_test_score / MAX_SCORE) * 100))

    family_bonus = FAMILY_HISTORY_BONUS if has_family_history(profile.family_history) else 0
    demo_risk = min(100, age_factor(profile.age) + family_bonus + MEMORY_SYMPTOMS_BONUS)

    blended = to_decimal(WEIGHTS.tests) * test_risk + to_decimal(WEIGHTS.demo) * demo_risk
    final_risk = int(round_half_up(clamp(blended, Decimal(0), Decimal(100))))
    category = risk_category(final_risk)

    return RiskAssessment(
        test_risk=test_risk,
        demo_risk=demo_risk,
        weights=WEIGHTS,
        final_risk=final_risk,
        category=category,
        avg_test_score=round_half_up(avg_test_score, 2),
        per_test=dict(per_test or {}),
        factors=_factor_labels(profile, avg_test_score),
        recommendations=list(RECOMMENDATIONS[category]),
    )
