import time
from typing import Set

from sqlalchemy.exc import SQLAlchemyError

from tatanyisani import db, socketio
from tatanyisani.models import Challenge
from . import countdown
from .errors import DuelError
from .settlement import expire_challenge


_scheduled_challenges: Set[str] = set()

# Wake a little after the deadline so the server clock agrees the round is over
_EXPIRY_MARGIN_SEC = 0.5


def schedule_expiry(app, challenge_id: str) -> None:
    """Settle an active duel for both players when its round ends.

    - No-ops in TESTING mode
    - Ensures a single timer per challenge
    - Pays out even if both clients have gone away
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    with app.app_context():
        challenge = db.session.get(Challenge, challenge_id)
        if not challenge or challenge.status != 'active' or challenge.start_time is None:
            return

        if challenge_id in _scheduled_challenges:
            app.logger.info(f"[timer-skip] challenge={challenge_id} already scheduled")
            return
        _scheduled_challenges.add(challenge_id)

        duration = int(app.config.get('DUEL_DURATION_SEC', 60))
        deadline = challenge.start_time + duration
        app.logger.info(f"[timer-set] challenge={challenge_id} duration={duration}s deadline={deadline}")

    def _worker(cid: str, deadline: float):
        delay = max(0.0, deadline - countdown.server_now()) + _EXPIRY_MARGIN_SEC
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        if hb > 0:
            slept = 0.0
            while slept < delay:
                step = min(hb, delay - slept)
                time.sleep(step)
                slept += step
                app.logger.info(f"[timer-heartbeat] challenge={cid} remaining={max(0.0, delay - slept):.1f}s")
        else:
            time.sleep(delay)
        with app.app_context():
            _scheduled_challenges.discard(cid)
            app.logger.info(f"[timer-fire] challenge={cid}")
            try:
                receipts = expire_challenge(cid)
            except DuelError as exc:
                app.logger.warning(f"[timer-abort] challenge={cid} error={exc}")
                return
            app.logger.info(f"[timer-done] challenge={cid} settled={len(receipts)}")

    if app.config.get('TESTING'):
        _worker(challenge_id, deadline)
    else:
        socketio.start_background_task(_worker, challenge_id, deadline)


def resume_expiry_timers(app) -> int:
    """Re-arm timers for duels left active by a previous process.

    Timers live in process memory, so a restart loses them. A duel already
    past its deadline fires straight away. Returns how many were scheduled.
    """
    with app.app_context():
        try:
            active_ids = db.session.execute(
                db.select(Challenge.id).where(Challenge.status == 'active', Challenge.start_time.isnot(None))
            ).scalars().all()
        except SQLAlchemyError as exc:
            # Tables may not exist yet, e.g. while running `flask db upgrade`
            db.session.rollback()
            app.logger.warning(f"[timer-resume-skip] error={exc}")
            return 0

    app.logger.info(f"[timer-resume] active={len(active_ids)}")
    for challenge_id in active_ids:
        schedule_expiry(app, challenge_id)
    return len(active_ids)
