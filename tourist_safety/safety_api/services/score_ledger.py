"""Safety score ledger.

Single write path for subject safety scores. Every change is clamped to
[MIN_SCORE, MAX_SCORE] and recorded as an append-only SafetyScoreEvent, so the
current score always equals the running clamped sum of the event deltas
starting from DEFAULT_SCORE.
"""

import logging
import time
from typing import Callable, Iterable, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import LedgerConfig
from ..db.models import SafetyScoreEvent, SubjectProfile
from ..errors import UpstreamStoreError
from ..locks import SubjectLockRegistry, subject_locks

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SCORE = 100.0
MIN_SCORE = 0.0
MAX_SCORE = 100.0


def clamp_score(score: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, score))


def replay_score(deltas: Iterable[float], start: float = DEFAULT_SCORE) -> float:
    """Re-derive a score from an event trail, clamping after every step."""
    score = start
    for delta in deltas:
        score = clamp_score(score + delta)
    return score


class SafetyScoreLedger:
    """Service for applying safety score changes."""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        locks: SubjectLockRegistry = subject_locks,
    ):
        """Initialize the ledger.

        Args:
            config: Retry configuration
            locks: Per-subject lock registry shared with the anomaly service
        """
        self.config = config or LedgerConfig()
        self.locks = locks

    def run_transaction(self, subject_id: str, db: Session, work: Callable[[Session], T]) -> T:
        """Run ``work`` and commit everything it staged as one transaction.

        ``work`` stages rows on the session (typically an anomaly change plus
        a ``stage_delta`` call) without committing. Transient failures (lost
        connections, a unique index conflict with a concurrent writer) roll
        the whole unit back and run ``work`` again from scratch, with
        exponential backoff. Exceptions raised by ``work`` itself roll back
        and propagate unchanged.

        Args:
            subject_id: Subject whose lock serializes the unit
            db: Database session
            work: Callable staging the changes; its return value is returned

        Returns:
            Whatever ``work`` returned on the attempt that committed

        Raises:
            UpstreamStoreError: If the store keeps failing or fails permanently
        """
        attempt = 0
        with self.locks.hold(subject_id):
            while True:
                attempt += 1
                try:
                    result = work(db)
                    db.commit()
                    return result
                except (OperationalError, IntegrityError) as e:
                    db.rollback()
                    if attempt >= self.config.max_retries:
                        logger.error(
                            f"Transaction for subject {subject_id} failed "
                            f"after {attempt} attempts: {e}"
                        )
                        raise UpstreamStoreError(f"Failed to update safety score: {e}") from e
                    delay = min(
                        self.config.base_retry_delay * (2 ** (attempt - 1)),
                        self.config.max_retry_delay,
                    )
                    logger.warning(
                        f"Transaction for subject {subject_id} failed "
                        f"(attempt {attempt}/{self.config.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                except SQLAlchemyError as e:
                    db.rollback()
                    raise UpstreamStoreError(f"Failed to update safety score: {e}") from e
                except Exception:
                    db.rollback()
                    raise

    def apply_delta(self, subject_id: str, delta: float, reason: str, db: Session) -> float:
        """Apply a signed delta to a subject's score and record the event.

        Args:
            subject_id: Subject identifier
            delta: Signed score change
            reason: Why the score changed (anomaly type, anomaly_resolved, ...)
            db: Database session

        Returns:
            Resulting score

        Raises:
            UpstreamStoreError: If the store keeps failing or fails permanently
        """
        return self.run_transaction(
            subject_id, db, lambda session: self.stage_delta(subject_id, delta, reason, session)
        )

    def stage_delta(self, subject_id: str, delta: float, reason: str, db: Session) -> float:
        """Stage a score change and its event on the session without committing.

        Must run inside ``run_transaction`` so the change commits, or rolls
        back, together with whatever caused it.
        """
        profile = (
            db.query(SubjectProfile)
            .filter(SubjectProfile.subject_id == subject_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if profile is None:
            profile = SubjectProfile(subject_id=subject_id, safety_score=DEFAULT_SCORE)
            db.add(profile)

        previous = profile.safety_score if profile.safety_score is not None else DEFAULT_SCORE
        new_score = clamp_score(previous + delta)
        profile.safety_score = new_score

        db.add(
            SafetyScoreEvent(
                subject_id=subject_id,
                delta=delta,
                reason=reason,
                resulting_score=new_score,
            )
        )
        db.flush()

        logger.info(
            f"Safety score for subject {subject_id}: {previous} -> {new_score} "
            f"(delta {delta:+}, reason: {reason})"
        )
        return new_score

    def get_score(self, subject_id: str, db: Session) -> float:
        """Current score of a subject (DEFAULT_SCORE if it has no profile)."""
        try:
            profile = db.query(SubjectProfile).filter(SubjectProfile.subject_id == subject_id).first()
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to read safety score: {e}") from e
        return profile.safety_score if profile is not None else DEFAULT_SCORE

    def list_events(
        self,
        subject_id: str,
        db: Session,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[SafetyScoreEvent]:
        """Score events of a subject, oldest first unless newest_first is set."""
        order = SafetyScoreEvent.id.desc() if newest_first else SafetyScoreEvent.id.asc()
        query = (
            db.query(SafetyScoreEvent)
            .filter(SafetyScoreEvent.subject_id == subject_id)
            .order_by(order)
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            return query.all()
        except SQLAlchemyError as e:
            raise UpstreamStoreError(f"Failed to read safety score events: {e}") from e
