"""Challenge records and the join coordinator.

The service is the only writer of ``players``, ``pot`` and ``status``. A join
is one transaction: debit the joiner, move the challenge from pending to
active under a version guard, and take seat 1. Losing the race rolls the whole
transaction back, debit included.
"""

from typing import List, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tatanyisani import db
from tatanyisani.models import Challenge, Participant, User
from . import countdown, ledger, scheduler
from .errors import (
    ChallengeFull,
    ChallengeNotActive,
    ChallengeNotFound,
    InsufficientFunds,
    NotAParticipant,
    WriteFailed,
)
from .events import broadcast_challenge


MAX_PLAYERS = 2


def _duration() -> int:
    return int(current_app.config.get('DUEL_DURATION_SEC', 60))


def _retry_attempts() -> int:
    return max(1, int(current_app.config.get('WRITE_RETRY_ATTEMPTS', 3)))


def get_challenge(challenge_id: str) -> Challenge:
    challenge = db.session.get(Challenge, challenge_id, populate_existing=True)
    if challenge is None:
        raise ChallengeNotFound()
    return challenge


def create_challenge(creator: User, stake: Optional[int] = None) -> Challenge:
    """Stake LP and open a pending duel with the creator in seat 0.

    The stake leaves the balance in the same transaction that creates the
    record, so a challenge is never visible without its funds committed.
    """
    if stake is None:
        stake = int(current_app.config.get('DUEL_STAKE', 20))
    if stake <= 0:
        raise ValueError('stake must be positive')

    try:
        ledger.debit(creator.id, stake)
        challenge = Challenge(creator_id=creator.id, status='pending', stake=stake, pot=stake)
        challenge.participants.append(Participant(user_id=creator.id, seat=0, name=creator.name, score=0))
        db.session.add(challenge)
        db.session.commit()
    except InsufficientFunds:
        db.session.rollback()
        current_app.logger.info(f"[create-rejected] user={creator.id} stake={stake} insufficient funds")
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[create-error] user={creator.id} stake={stake} error={exc}")
        raise WriteFailed() from exc

    current_app.logger.info(f"[create] challenge={challenge.id} user={creator.id} stake={stake}")
    broadcast_challenge(challenge)
    return challenge


def _commit_join(challenge_id: str, joiner: User, stake: int, expected_version: int) -> bool:
    """Apply the pending -> active transition if nobody else got there first."""
    result = db.session.execute(
        update(Challenge)
        .where(
            Challenge.id == challenge_id,
            Challenge.status == 'pending',
            Challenge.version == expected_version,
        )
        .values(
            status='active',
            pot=Challenge.pot + stake,
            start_time=countdown.server_now(),
            version=Challenge.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    db.session.add(Participant(challenge_id=challenge_id, user_id=joiner.id, seat=1, name=joiner.name, score=0))
    db.session.commit()
    return True


def attempt_join(challenge_id: str, joiner: User) -> Challenge:
    """Take the open seat of a pending challenge.

    Joining a challenge you are already in returns it unchanged, so duplicate
    snapshot handlers and retries are harmless.
    """
    for attempt in range(1, _retry_attempts() + 1):
        challenge = get_challenge(challenge_id)
        if challenge.has_player(joiner.id):
            return challenge
        if challenge.status != 'pending' or len(challenge.participants) >= MAX_PLAYERS:
            raise ChallengeFull()

        stake = challenge.stake
        expected_version = challenge.version
        try:
            ledger.debit(joiner.id, stake)
            joined = _commit_join(challenge_id, joiner, stake, expected_version)
        except InsufficientFunds:
            db.session.rollback()
            current_app.logger.info(f"[join-rejected] challenge={challenge_id} user={joiner.id} insufficient funds")
            raise
        except IntegrityError:
            # Seat 1 was taken between our read and our commit
            joined = False
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.warning(f"[join-error] challenge={challenge_id} user={joiner.id} attempt={attempt} error={exc}")
            continue

        if not joined:
            db.session.rollback()
            current_app.logger.info(f"[join-conflict] challenge={challenge_id} user={joiner.id} attempt={attempt} version={expected_version}")
            continue

        challenge = get_challenge(challenge_id)
        current_app.logger.info(f"[join] challenge={challenge_id} user={joiner.id} pot={challenge.pot} start={challenge.start_time}")
        broadcast_challenge(challenge)
        scheduler.schedule_expiry(current_app._get_current_object(), challenge_id)
        return challenge

    raise WriteFailed()


def record_score(challenge_id: str, user_id: int, points: Optional[int] = None) -> Challenge:
    """Add points to the caller's own score while the round is running."""
    if points is None:
        points = int(current_app.config.get('SCORE_INCREMENT', 10))

    challenge = get_challenge(challenge_id)
    if not challenge.has_player(user_id):
        raise NotAParticipant()
    if challenge.status != 'active' or countdown.is_expired(challenge.start_time, _duration(), countdown.server_now()):
        raise ChallengeNotActive()

    try:
        # Holds the challenge row until commit; settlement's flip waits on it
        locked = db.session.execute(
            db.select(Challenge.id)
            .where(Challenge.id == challenge_id, Challenge.status == 'active')
            .with_for_update()
        ).scalar_one_or_none()
        if locked is None:
            db.session.rollback()
            raise ChallengeNotActive()
        result = db.session.execute(
            update(Participant)
            .where(
                Participant.challenge_id == challenge_id,
                Participant.user_id == user_id,
            )
            .values(score=Participant.score + points)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise ChallengeNotActive()
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(f"[score-error] challenge={challenge_id} user={user_id} error={exc}")
        raise WriteFailed() from exc

    challenge = get_challenge(challenge_id)
    broadcast_challenge(challenge)
    return challenge


def list_challenges_for(user_id: int) -> List[Challenge]:
    """Match history for the lobby, newest first."""
    return (
        Challenge.query.join(Participant)
        .filter(Participant.user_id == user_id)
        .order_by(Challenge.created_at.desc())
        .all()
    )


def list_open_challenges(user_id: int) -> List[Challenge]:
    """Pending duels created by someone else, newest first."""
    return (
        Challenge.query.filter(Challenge.status == 'pending', Challenge.creator_id != user_id)
        .order_by(Challenge.created_at.desc())
        .all()
    )
