from typing import Callable, Optional

from .countdown import Countdown
from .errors import ChallengeNotFound, ChallengeStillRunning, DuelError


class DuelSession:
    """One player's view of one duel.

    Reacts to snapshots the way a connected client does: joins an open
    challenge once, counts down from the shared start time, and settles once
    when the round ends or the opponent has already closed it. ``join`` and
    ``settle`` are called as ``fn(challenge_id, user_id)``; ``on_exit`` is
    called as ``on_exit(reason, detail)`` when the player should leave the
    duel view.
    """

    def __init__(
        self,
        challenge_id: str,
        user_id: int,
        join: Callable,
        settle: Callable,
        on_exit: Optional[Callable] = None,
        duration: int = 60,
    ):
        self.challenge_id = challenge_id
        self.user_id = user_id
        self._join = join
        self._settle = settle
        self._on_exit = on_exit
        self.countdown = Countdown(duration)
        self.snapshot: Optional[dict] = None
        self.join_triggered = False
        self.has_ended = False
        self.exit_reason: Optional[str] = None

    @property
    def time_left(self) -> int:
        return self.countdown.time_left

    def _exit(self, reason: str, detail=None) -> None:
        self.exit_reason = reason
        if self._on_exit is not None:
            self._on_exit(reason, detail)

    def _is_player(self) -> bool:
        return bool(self.snapshot) and self.user_id in self.snapshot.get('players', [])

    def on_snapshot(self, snapshot: Optional[dict]) -> None:
        if snapshot is None:
            self._exit('missing', ChallengeNotFound())
            return

        self.snapshot = snapshot
        self.countdown.observe(snapshot)
        status = snapshot.get('status')

        if status == 'completed' and not self.has_ended:
            if self._is_player():
                self.end_match()
            else:
                self.has_ended = True
                self._exit('completed')
            return

        if status == 'pending' and not self._is_player() and not self.join_triggered:
            self.join_triggered = True
            try:
                joined = self._join(self.challenge_id, self.user_id)
            except DuelError as exc:
                self._exit(type(exc).__name__, exc)
                return
            if joined:
                self.snapshot = joined
                self.countdown.observe(joined)

    def tick(self, now: float) -> int:
        if self.countdown.tick(now):
            self.end_match()
        return self.time_left

    def end_match(self):
        if self.has_ended:
            return None
        self.has_ended = True
        try:
            receipt = self._settle(self.challenge_id, self.user_id)
        except ChallengeStillRunning:
            # Local clock ran ahead of the server; keep counting
            self.has_ended = False
            self.countdown.rearm()
            return None
        except DuelError as exc:
            self._exit(type(exc).__name__, exc)
            return None
        self._exit('settled', receipt)
        return receipt
