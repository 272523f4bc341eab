"""
Certification scoring and the Bronze/Silver/Gold state machine.

Levels only move forward. ``evaluate`` and ``score`` recompute everything
from persisted signals on each call; ``promote`` writes the level cache and
never demotes, so a regression only shows up in ``criteria_results``.
"""

import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.database import Deadline, persistence_guard
from app.models.certification import CertificationCriterion, CertificationRequest, SkillCertification
from app.models.skill import Skill
from app.services.certification_checks import (
    AUTO_CHECKS,
    CERTIFIABLE_LEVELS,
    DEFAULT_CRITERIA,
    Level,
    SkillSignals,
    levels_up_to,
    load_signals,
    next_level,
    rank,
)
from app.services.errors import CertificationError

logger = structlog.get_logger()


class CriterionStatus(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    PENDING = "pending"


class RequestStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class CriterionResult:
    criterion_id: str
    name: str
    description: str | None
    level: Level
    weight: float
    auto_checkable: bool
    status: CriterionStatus
    value: str | None = None


@dataclass(frozen=True, slots=True)
class CertificationStatus:
    skill_id: str
    level: Level
    next_level: Level | None
    quality_score: float
    criteria_results: tuple[CriterionResult, ...]
    pending_request_id: str | None = None

    @property
    def progress_percentage(self) -> int:
        return round(self.quality_score)

    @property
    def missing_criteria(self) -> list[str]:
        return [r.name for r in self.criteria_results if r.status is not CriterionStatus.PASSED]

    @property
    def can_request_upgrade(self) -> bool:
        """Auto criteria all pass and only manual review is left."""
        if self.next_level is None or self.pending_request_id is not None:
            return False
        auto_ok = all(r.status is CriterionStatus.PASSED for r in self.criteria_results if r.auto_checkable)
        manual_open = any(
            r.status is not CriterionStatus.PASSED for r in self.criteria_results if not r.auto_checkable
        )
        return auto_ok and manual_open


@dataclass(frozen=True, slots=True)
class PromotionResult:
    previous: Level
    level: Level

    @property
    def changed(self) -> bool:
        return self.level is not self.previous


@dataclass(frozen=True, slots=True)
class CertificationReport:
    status: CertificationStatus
    quality_score: float
    promotion: PromotionResult


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def weighted_score(results: Iterable[CriterionResult]) -> float:
    """100 x passed weight / total weight, 0 when there is nothing to weigh."""
    results = list(results)
    total = sum(r.weight for r in results)
    if total <= 0:
        return 0.0
    passed = sum(r.weight for r in results if r.status is CriterionStatus.PASSED)
    return round(100 * passed / total, 2)


def seed_default_criteria(db: Session) -> int:
    """Insert the default criteria when the table is empty. Returns rows added."""
    with persistence_guard(db, "certification.seed"):
        if db.execute(select(CertificationCriterion.id).limit(1)).first() is not None:
            return 0
        for level, name, weight, auto, description in DEFAULT_CRITERIA:
            db.add(
                CertificationCriterion(
                    level=level, name=name, weight=weight, auto_checkable=auto, description=description
                )
            )
        db.commit()
    return len(DEFAULT_CRITERIA)


class CertificationEngine:
    """Computes certification status, scores and promotions for skills."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = _utcnow):
        self._db = db
        self._clock = clock

    # -- Queries ---------------------------------------------------------

    def list_criteria(self, *, timeout: float | None = None) -> dict[Level, list[CertificationCriterion]]:
        """Criteria grouped by level, heaviest first within each level."""
        deadline = Deadline(timeout)
        with persistence_guard(self._db, "certification.list_criteria", deadline):
            grouped = self._criteria_by_level()
            deadline.check("certification.list_criteria")
        return grouped

    def evaluate(self, skill_id: str, *, timeout: float | None = None) -> CertificationStatus:
        """
        Classify the criteria of the next unachieved level.

        Once gold is held the gold criteria are reported, so regressions stay
        visible.
        """
        deadline = Deadline(timeout)
        with persistence_guard(self._db, "certification.evaluate", deadline):
            status = self._evaluate(self._load_skill(skill_id))
            deadline.check("certification.evaluate")
        return status

    # -- Writes ----------------------------------------------------------

    def score(self, skill_id: str, *, timeout: float | None = None) -> float:
        """Recompute the weighted score from scratch and cache it on the skill."""
        deadline = Deadline(timeout)
        with persistence_guard(self._db, "certification.score", deadline):
            skill = self._load_skill(skill_id)
            status = self._evaluate(skill)
            skill.quality_score = status.quality_score
            deadline.check("certification.score")
            self._db.commit()

        logger.info("certification_score_updated", skill_id=skill_id, quality_score=status.quality_score)
        return status.quality_score

    def promote(
        self, skill_id: str, *, certified_by: str | None = None, timeout: float | None = None
    ) -> PromotionResult:
        """
        Raise the cached level as far as the criteria allow.

        A level is reached only when every criterion at that level and below
        passes. The level never goes down.
        """
        deadline = Deadline(timeout)
        with persistence_guard(self._db, "certification.promote", deadline):
            skill = self._load_skill(skill_id)
            current = self._current_level(skill)
            criteria = self._criteria_by_level()
            manual = self._manual_states(skill.id)
            now = self._clock()
            signals = load_signals(self._db, skill, current, now)

            reached = current
            for candidate in CERTIFIABLE_LEVELS[rank(current):]:
                if not criteria[candidate]:
                    break
                held = signals.model_copy(update={"level": reached})
                required = [c for lvl in levels_up_to(candidate) for c in criteria[lvl]]
                results = self._classify(required, held, manual)
                if any(r.status is not CriterionStatus.PASSED for r in results):
                    break
                reached = candidate

            result = PromotionResult(previous=current, level=reached)
            if not result.changed:
                return result

            skill.certification = str(reached)
            skill.certified_at = now
            for gained in CERTIFIABLE_LEVELS[rank(current):rank(reached)]:
                self._db.add(
                    SkillCertification(
                        skill_id=skill.id,
                        level=str(gained),
                        quality_score=skill.quality_score,
                        certified_by=certified_by,
                        certified_at=now,
                    )
                )
            deadline.check("certification.promote")
            self._db.commit()

        logger.info(
            "certification_promoted",
            skill_id=skill_id,
            previous=str(current),
            level=str(reached),
            certified_by=certified_by,
        )
        return result

    def certify(self, skill_id: str, actor_id: str, *, timeout: float | None = None) -> CertificationReport:
        """Promote, refresh the cached score, then report the resulting status."""
        promotion = self.promote(skill_id, certified_by=actor_id, timeout=timeout)
        quality_score = self.score(skill_id, timeout=timeout)
        status = self.evaluate(skill_id, timeout=timeout)
        return CertificationReport(status=status, quality_score=quality_score, promotion=promotion)

    # -- Manual review workflow -----------------------------------------

    def request_review(
        self, skill_id: str, requested_by: str, target_level: str, *, timeout: float | None = None
    ) -> CertificationRequest:
        """Open a manual review request for the next level's manual criteria."""
        try:
            target = Level(target_level)
        except ValueError:
            raise CertificationError("INVALID_LEVEL", f"Unknown level: {target_level}")
        deadline = Deadline(timeout)

        with persistence_guard(self._db, "certification.request_review", deadline):
            skill = self._load_skill(skill_id)
            status = self._evaluate(skill)

            if status.next_level is None or target is not status.next_level:
                raise CertificationError(
                    "LEVEL_NOT_NEXT",
                    f"Only the next level can be requested (current: {status.level})",
                )
            if all(r.auto_checkable for r in status.criteria_results):
                raise CertificationError(
                    "NO_MANUAL_CRITERIA",
                    f"Level {target} is certified automatically; no review is needed",
                )
            if status.pending_request_id is not None:
                raise CertificationError(
                    "REQUEST_PENDING",
                    "A certification request is already pending for this skill",
                    status_code=409,
                )
            unmet = [
                r.name for r in status.criteria_results
                if r.auto_checkable and r.status is not CriterionStatus.PASSED
            ]
            if unmet:
                raise CertificationError(
                    "AUTO_CRITERIA_UNMET",
                    "Not all automatic criteria are met",
                    details={"missing_criteria": unmet},
                )

            request = CertificationRequest(
                skill_id=skill.id,
                target_level=str(target),
                status=str(RequestStatus.PENDING),
                requested_by=requested_by,
                requested_at=self._clock(),
                quality_score_at_request=status.quality_score,
            )
            self._db.add(request)
            deadline.check("certification.request_review")
            self._db.commit()
            self._db.refresh(request)

        logger.info(
            "certification_request_created",
            request_id=request.id,
            skill_id=skill_id,
            target_level=str(target),
        )
        return request

    def review_request(
        self,
        request_id: str,
        reviewer_id: str,
        decision: str,
        feedback: str | None = None,
        *,
        timeout: float | None = None,
    ) -> tuple[CertificationRequest, PromotionResult | None]:
        """
        Record an administrative decision.

        Approval marks the manual criteria of the target level as passed and
        runs promotion. Rejection leaves them failed until a new request.
        """
        if decision not in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            raise CertificationError("INVALID_DECISION", "decision must be 'approved' or 'rejected'")
        deadline = Deadline(timeout)

        with persistence_guard(self._db, "certification.review_request", deadline):
            request = self._db.get(CertificationRequest, request_id)
            if request is None:
                raise CertificationError("REQUEST_NOT_FOUND", "Certification request not found", status_code=404)
            if request.status != RequestStatus.PENDING:
                raise CertificationError(
                    "REQUEST_ALREADY_REVIEWED", "This request has already been reviewed", status_code=409
                )

            request.status = str(decision)
            request.reviewed_by = reviewer_id
            request.reviewed_at = self._clock()
            request.feedback = feedback
            deadline.check("certification.review_request")
            self._db.commit()
            self._db.refresh(request)

        logger.info(
            "certification_request_reviewed",
            request_id=request_id,
            skill_id=request.skill_id,
            decision=str(decision),
            reviewer_id=reviewer_id,
        )

        if decision != RequestStatus.APPROVED:
            return request, None

        promotion = self.promote(request.skill_id, certified_by=reviewer_id, timeout=timeout)
        self.score(request.skill_id, timeout=timeout)
        return request, promotion

    # -- Internals -------------------------------------------------------

    def _load_skill(self, skill_id: str) -> Skill:
        skill = self._db.get(Skill, skill_id)
        if skill is None:
            raise CertificationError("SKILL_NOT_FOUND", "Skill not found", status_code=404)
        return skill

    def _current_level(self, skill: Skill) -> Level:
        try:
            return Level(skill.certification)
        except ValueError:
            logger.warning("skill_level_quarantined", skill_id=skill.id, value=skill.certification)
            return Level.NONE

    def _criteria_by_level(self) -> dict[Level, list[CertificationCriterion]]:
        rows = self._db.execute(
            select(CertificationCriterion).order_by(
                CertificationCriterion.weight.desc(), CertificationCriterion.name
            )
        ).scalars()

        known_levels = {str(lvl) for lvl in CERTIFIABLE_LEVELS}
        grouped: dict[Level, list[CertificationCriterion]] = {lvl: [] for lvl in CERTIFIABLE_LEVELS}
        for row in rows:
            weight_ok = row.weight is not None and math.isfinite(row.weight) and row.weight > 0
            if row.level not in known_levels or not weight_ok or not row.name:
                logger.warning(
                    "certification_criterion_quarantined", criterion_id=row.id, level=row.level, weight=row.weight
                )
                continue
            grouped[Level(row.level)].append(row)
        return grouped

    def _manual_states(self, skill_id: str) -> dict[Level, CriterionStatus]:
        """Approved anywhere wins; otherwise the latest request decides."""
        requests = self._db.execute(
            select(CertificationRequest)
            .where(CertificationRequest.skill_id == skill_id)
            .order_by(CertificationRequest.requested_at)
        ).scalars()

        states: dict[Level, CriterionStatus] = {}
        for req in requests:
            try:
                level = Level(req.target_level)
            except ValueError:
                continue
            if states.get(level) is CriterionStatus.PASSED:
                continue
            if req.status == RequestStatus.APPROVED:
                states[level] = CriterionStatus.PASSED
            elif req.status == RequestStatus.REJECTED:
                states[level] = CriterionStatus.FAILED
            else:
                states[level] = CriterionStatus.PENDING
        return states

    def _pending_request_id(self, skill_id: str) -> str | None:
        return self._db.execute(
            select(CertificationRequest.id)
            .where(
                CertificationRequest.skill_id == skill_id,
                CertificationRequest.status == str(RequestStatus.PENDING),
            )
            .limit(1)
        ).scalar_one_or_none()

    def _classify(
        self,
        criteria: Iterable[CertificationCriterion],
        signals: SkillSignals,
        manual: dict[Level, CriterionStatus],
    ) -> list[CriterionResult]:
        results = []
        for c in criteria:
            level = Level(c.level)
            value = None
            if c.auto_checkable:
                check = AUTO_CHECKS.get(c.name)
                outcome = check(signals) if check else None
                if outcome is None:
                    status = CriterionStatus.PENDING
                else:
                    status = CriterionStatus.PASSED if outcome.passed else CriterionStatus.FAILED
                    value = outcome.value
            else:
                status = manual.get(level, CriterionStatus.PENDING)

            results.append(
                CriterionResult(
                    criterion_id=c.id,
                    name=c.name,
                    description=c.description,
                    level=level,
                    weight=c.weight,
                    auto_checkable=c.auto_checkable,
                    status=status,
                    value=value,
                )
            )
        return results

    def _evaluate(self, skill: Skill) -> CertificationStatus:
        current = self._current_level(skill)
        upcoming = next_level(current)
        target = upcoming or current

        criteria = self._criteria_by_level()
        signals = load_signals(self._db, skill, current, self._clock())
        results = self._classify(criteria.get(target, []), signals, self._manual_states(skill.id))

        return CertificationStatus(
            skill_id=skill.id,
            level=current,
            next_level=upcoming,
            quality_score=weighted_score(results),
            criteria_results=tuple(results),
            pending_request_id=self._pending_request_id(skill.id),
        )
