from typing import Callable, List

from flask import current_app

from tatanyisani import socketio
from tatanyisani.models import Challenge
from . import countdown


NAMESPACE = '/ws'


def challenge_room(challenge_id: str) -> str:
    return f"challenge:{challenge_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def challenge_snapshot(challenge: Challenge) -> dict:
    """Full challenge state plus the server's view of the countdown."""
    duration = int(current_app.config.get('DUEL_DURATION_SEC', 60))
    payload = challenge.to_dict()
    payload['duration'] = duration
    if challenge.status == 'active' and challenge.start_time is not None:
        left = countdown.remaining_seconds(challenge.start_time, duration, countdown.server_now())
        payload['remaining'] = max(0, left)
    elif challenge.status == 'pending':
        payload['remaining'] = duration
    else:
        payload['remaining'] = 0
    return payload


# Called as fn(challenge_id, payload) after every broadcast
_snapshot_listeners: List[Callable] = []


def add_snapshot_listener(fn: Callable) -> None:
    if fn not in _snapshot_listeners:
        _snapshot_listeners.append(fn)


def broadcast_challenge(challenge: Challenge) -> None:
    """Push the committed state to everyone watching the duel or its players' lobbies."""
    payload = challenge_snapshot(challenge)
    socketio.emit('challenge_state', payload, to=challenge_room(challenge.id), namespace=NAMESPACE)
    for user_id in challenge.players:
        socketio.emit('challenge_state', payload, to=user_room(user_id), namespace=NAMESPACE)
    for listener in list(_snapshot_listeners):
        listener(challenge.id, payload)
