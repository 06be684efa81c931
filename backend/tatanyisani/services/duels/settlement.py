"""Settlement: decide the duel and pay each participant exactly once.

Either player's client, and the server's expiry timer, may call ``settle``
for the same challenge at nearly the same time. Each call only ever credits
the observing player, and the receipt table's unique (challenge, user) key
makes the payout happen once per player no matter how many calls arrive.
"""

from typing import List, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tatanyisani import db
from tatanyisani.models import Challenge, Participant, Settlement
from . import countdown, ledger
from .errors import ChallengeStillRunning, NotAParticipant, WriteFailed
from .events import broadcast_challenge


def _receipt_for(challenge_id: str, user_id: int) -> Optional[Settlement]:
    return Settlement.query.filter_by(challenge_id=challenge_id, user_id=user_id).first()


def outcome_for(my_score: int, their_score: int, stake: int, players: int):
    """Return (outcome, payout) from the observer's point of view."""
    if my_score > their_score:
        return 'win', stake * players
    if my_score < their_score:
        return 'loss', 0
    return 'draw', stake


def _mark_completed(challenge_id: str, now: float) -> bool:
    """active -> completed, emptying the pot. False if already completed."""
    result = db.session.execute(
        update(Challenge)
        .where(Challenge.id == challenge_id, Challenge.status == 'active')
        .values(status='completed', pot=0, completed_at=now, version=Challenge.version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _freeze_result(challenge_id: str) -> None:
    """Copy live scores into final_score and record the winner.

    Runs in the same transaction as the active -> completed flip. Scores
    written after that do not change any payout.
    """
    db.session.execute(
        update(Participant)
        .where(Participant.challenge_id == challenge_id)
        .values(final_score=Participant.score)
        .execution_options(synchronize_session=False)
    )
    rows = db.session.execute(
        db.select(Participant.user_id, Participant.final_score).where(Participant.challenge_id == challenge_id)
    ).all()
    top = max(score for _, score in rows)
    leaders = [uid for uid, score in rows if score == top]
    winner_id = leaders[0] if len(leaders) == 1 else None
    db.session.execute(
        update(Challenge)
        .where(Challenge.id == challenge_id)
        .values(winner_id=winner_id)
        .execution_options(synchronize_session=False)
    )


def _settle_once(challenge_id: str, observer_id: int) -> Optional[Settlement]:
    challenge = db.session.get(Challenge, challenge_id, populate_existing=True)
    if challenge is None:
        current_app.logger.info(f"[settle-skip] challenge={challenge_id} missing")
        return None
    if len(challenge.participants) < 2:
        current_app.logger.info(f"[settle-skip] challenge={challenge_id} opponent never joined")
        return None
    if not challenge.has_player(observer_id):
        raise NotAParticipant()

    now = countdown.server_now()
    duration = int(current_app.config.get('DUEL_DURATION_SEC', 60))
    if challenge.status == 'active' and not countdown.is_expired(challenge.start_time, duration, now):
        raise ChallengeStillRunning()

    receipt = _receipt_for(challenge_id, observer_id)
    if receipt is not None:
        return receipt

    stake = challenge.stake
    flipped = _mark_completed(challenge_id, now)
    if flipped:
        _freeze_result(challenge_id)

    # Every settlement reads the result frozen by the call that flipped the duel
    participants = (
        Participant.query.filter_by(challenge_id=challenge_id)
        .order_by(Participant.seat)
        .populate_existing()
        .all()
    )
    scores = {p.user_id: p.final_score for p in participants}
    mine = scores[observer_id]
    theirs = max(score for uid, score in scores.items() if uid != observer_id)

    outcome, payout = outcome_for(mine, theirs, stake, len(participants))
    receipt = Settlement(challenge_id=challenge_id, user_id=observer_id, outcome=outcome, payout=payout, settled_at=now)
    db.session.add(receipt)
    ledger.credit(observer_id, payout)
    db.session.commit()

    current_app.logger.info(
        f"[settle] challenge={challenge_id} user={observer_id} outcome={outcome} payout={payout} scores={mine}-{theirs}"
    )
    broadcast_challenge(db.session.get(Challenge, challenge_id, populate_existing=True))
    return receipt


def settle(challenge_id: str, observer_id: int) -> Optional[Settlement]:
    """Pay out the observer's share and close the duel.

    Returns the observer's receipt, the existing one on repeat calls, or None
    when there is nothing to adjudicate (missing record, no opponent).
    """
    for attempt in range(1, max(1, int(current_app.config.get('WRITE_RETRY_ATTEMPTS', 3))) + 1):
        try:
            return _settle_once(challenge_id, observer_id)
        except IntegrityError:
            # Another caller stored this player's receipt first
            db.session.rollback()
            receipt = _receipt_for(challenge_id, observer_id)
            if receipt is not None:
                return receipt
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.warning(f"[settle-error] challenge={challenge_id} user={observer_id} attempt={attempt} error={exc}")
    raise WriteFailed()


def expire_challenge(challenge_id: str) -> List[Settlement]:
    """Settle every participant once the round is over."""
    challenge = db.session.get(Challenge, challenge_id, populate_existing=True)
    if challenge is None:
        return []
    receipts = []
    for user_id in challenge.players:
        receipt = settle(challenge_id, user_id)
        if receipt is not None:
            receipts.append(receipt)
    return receipts
