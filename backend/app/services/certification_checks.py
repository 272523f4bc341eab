"""
Certification levels, skill signals and the auto-check catalogue.

Signals are read from persistence, never recomputed here. A check returns
None when its signal is missing, which the engine reports as ``pending``.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.purchase import Purchase
from app.models.skill import Skill

logger = structlog.get_logger()


class Level(StrEnum):
    NONE = "none"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


LEVEL_ORDER: tuple[Level, ...] = (Level.NONE, Level.BRONZE, Level.SILVER, Level.GOLD)
CERTIFIABLE_LEVELS: tuple[Level, ...] = LEVEL_ORDER[1:]


def rank(level: Level) -> int:
    return LEVEL_ORDER.index(level)


def next_level(level: Level) -> Level | None:
    idx = rank(level)
    return LEVEL_ORDER[idx + 1] if idx + 1 < len(LEVEL_ORDER) else None


def levels_up_to(level: Level) -> tuple[Level, ...]:
    """Certifiable levels from bronze through ``level`` inclusive."""
    return CERTIFIABLE_LEVELS[: rank(level)]


# Thresholds
DOCUMENTATION_MIN_CHARS = 300
CODE_QUALITY_MIN = 60.0
TEST_COVERAGE_MIN = 70.0
SALES_MINIMUM = 5
SALES_VOLUME = 50
HIGH_RATING_MIN = 4.5
HIGH_RATING_MIN_REVIEWS = 5
DEFECT_FREE_DAYS = 30
I18N_MIN = 0.9


class SkillSignals(BaseModel):
    """Typed view of the persisted signals for one skill."""

    model_config = ConfigDict(frozen=True)

    level: Level = Level.NONE
    has_file: bool = False
    documentation_chars: int | None = Field(default=None, ge=0)
    test_coverage: float | None = Field(default=None, ge=0, le=100)
    static_analysis_score: float | None = Field(default=None, ge=0, le=100)
    sales_count: int = Field(default=0, ge=0)
    rating_avg: float | None = Field(default=None, ge=0, le=5)
    rating_count: int = Field(default=0, ge=0)
    i18n_completeness: float | None = Field(default=None, ge=0, le=1)
    days_since_last_critical_defect: int | None = Field(default=None, ge=0)


def build_signals(raw: dict, skill_id: str | None = None) -> SkillSignals:
    """
    Validate raw signal values.

    Fields that fail validation are quarantined: logged and treated as
    missing rather than passed on to the checks.
    """
    try:
        return SkillSignals.model_validate(raw)
    except ValidationError as e:
        bad_fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        logger.warning("skill_signals_quarantined", skill_id=skill_id, fields=sorted(bad_fields))
        defaults = SkillSignals()
        cleaned = {
            key: (getattr(defaults, key) if key in bad_fields else value)
            for key, value in raw.items()
            if key in SkillSignals.model_fields
        }
        return SkillSignals.model_validate(cleaned)


def load_signals(db: Session, skill: Skill, level: Level, now: datetime) -> SkillSignals:
    """Collect the persisted signals for ``skill``."""
    sales_count = db.execute(
        select(func.count(Purchase.id)).where(Purchase.skill_id == skill.id)
    ).scalar_one()

    defect_reference = skill.last_critical_defect_at or skill.published_at
    days_since_defect = (now - defect_reference).days if defect_reference else None

    raw = {
        "level": level,
        "has_file": bool(skill.file_url),
        "documentation_chars": len(skill.description_long) if skill.description_long is not None else None,
        "test_coverage": skill.test_coverage,
        "static_analysis_score": skill.static_analysis_score,
        "sales_count": sales_count,
        "rating_avg": skill.rating_avg,
        "rating_count": skill.rating_count or 0,
        "i18n_completeness": skill.i18n_completeness,
        "days_since_last_critical_defect": days_since_defect,
    }
    return build_signals(raw, skill_id=skill.id)


@dataclass(frozen=True, slots=True)
class CheckOutcome:
    passed: bool
    value: str


Check = Callable[[SkillSignals], CheckOutcome | None]


def check_file_present(s: SkillSignals) -> CheckOutcome:
    return CheckOutcome(s.has_file, "OK" if s.has_file else "No archive uploaded")


def check_documentation(s: SkillSignals) -> CheckOutcome | None:
    if s.documentation_chars is None:
        return None
    return CheckOutcome(s.documentation_chars >= DOCUMENTATION_MIN_CHARS, f"{s.documentation_chars} chars")


def check_code_quality(s: SkillSignals) -> CheckOutcome | None:
    if s.static_analysis_score is None:
        return None
    return CheckOutcome(s.static_analysis_score >= CODE_QUALITY_MIN, f"{s.static_analysis_score:g}/100")


def check_test_coverage(s: SkillSignals) -> CheckOutcome | None:
    if s.test_coverage is None:
        return None
    return CheckOutcome(s.test_coverage >= TEST_COVERAGE_MIN, f"{s.test_coverage:g}%")


def check_sales_minimum(s: SkillSignals) -> CheckOutcome:
    return CheckOutcome(s.sales_count >= SALES_MINIMUM, str(s.sales_count))


def check_sales_volume(s: SkillSignals) -> CheckOutcome:
    return CheckOutcome(s.sales_count >= SALES_VOLUME, str(s.sales_count))


def check_high_rating(s: SkillSignals) -> CheckOutcome | None:
    if s.rating_avg is None or s.rating_count == 0:
        return None
    passed = s.rating_avg >= HIGH_RATING_MIN and s.rating_count >= HIGH_RATING_MIN_REVIEWS
    return CheckOutcome(passed, f"{s.rating_avg:.1f}/5 ({s.rating_count} reviews)")


def check_no_critical_bugs(s: SkillSignals) -> CheckOutcome | None:
    if s.days_since_last_critical_defect is None:
        return None
    days = s.days_since_last_critical_defect
    return CheckOutcome(days >= DEFECT_FREE_DAYS, f"{days} days")


def check_i18n(s: SkillSignals) -> CheckOutcome | None:
    if s.i18n_completeness is None:
        return None
    return CheckOutcome(s.i18n_completeness >= I18N_MIN, f"{s.i18n_completeness:.0%}")


def check_silver_validated(s: SkillSignals) -> CheckOutcome:
    return CheckOutcome(rank(s.level) >= rank(Level.SILVER), str(s.level))


AUTO_CHECKS: dict[str, Check] = {
    "file_present": check_file_present,
    "documentation_complete": check_documentation,
    "code_quality": check_code_quality,
    "test_coverage": check_test_coverage,
    "sales_minimum": check_sales_minimum,
    "no_critical_bugs": check_no_critical_bugs,
    "i18n_complete": check_i18n,
    "silver_validated": check_silver_validated,
    "sales_volume": check_sales_volume,
    "high_rating": check_high_rating,
}


# (level, name, weight, auto_checkable, description)
DEFAULT_CRITERIA: tuple[tuple[str, str, float, bool, str], ...] = (
    ("bronze", "file_present", 3.0, True, "A skill archive has been uploaded"),
    ("bronze", "documentation_complete", 2.0, True, "Long description of at least 300 characters"),
    ("bronze", "code_quality", 2.0, True, "Static analysis score of at least 60"),
    ("silver", "test_coverage", 3.0, True, "Measured test coverage of at least 70%"),
    ("silver", "manual_review", 3.0, False, "Reviewed by the quality team"),
    ("silver", "sales_minimum", 2.0, True, "At least 5 sales"),
    ("silver", "no_critical_bugs", 2.0, True, "No critical defect in the last 30 days"),
    ("gold", "sales_volume", 3.0, True, "At least 50 sales"),
    ("gold", "high_rating", 3.0, True, "Average rating of 4.5 or more over 5+ reviews"),
    ("gold", "security_audit", 3.0, False, "Passed a manual security audit"),
    ("gold", "i18n_complete", 1.0, True, "At least 90% of strings translated"),
    ("gold", "silver_validated", 1.0, True, "Silver certification held"),
)
