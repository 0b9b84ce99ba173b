# apps/safety/levels.py

from django.db import models

from apps.safety.constants import LEVEL_THRESHOLDS, MIN_RISK_SCORE, MAX_RISK_SCORE


class RiskLevel(models.IntegerChoices):
    """
    Five-point severity scale shared by shields, risk profiles and provider signals.
    Stored as an integer so that "only upgrade" writes can be expressed as
    `filter(level__lt=new).update(level=new)`.
    """
    NONE = 0, 'NONE'
    LOW = 1, 'LOW'
    MEDIUM = 2, 'MEDIUM'
    HIGH = 3, 'HIGH'
    CRITICAL = 4, 'CRITICAL'


def parse_level(value) -> RiskLevel:
    """Accept a RiskLevel, its int value or its name ("HIGH")."""
    if isinstance(value, RiskLevel):
        return value
    if isinstance(value, str):
        try:
            return RiskLevel[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown risk level: {value!r}")
    return RiskLevel(int(value))


def cap_score(score: float) -> float:
    return round(max(MIN_RISK_SCORE, min(float(score), MAX_RISK_SCORE)), 2)


def level_for_score(score: float, thresholds=LEVEL_THRESHOLDS) -> RiskLevel:
    for minimum, name in thresholds:
        if score >= minimum:
            return parse_level(name)
    return RiskLevel.NONE
