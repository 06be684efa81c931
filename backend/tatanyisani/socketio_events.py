from flask_socketio import join_room, leave_room, emit
from flask_login import current_user
from flask import current_app, request
from tatanyisani import socketio, db
from tatanyisani.models import Challenge, User
from tatanyisani.services.duels import challenges as duel_challenges, countdown
from tatanyisani.services.duels.events import NAMESPACE, add_snapshot_listener, challenge_room, challenge_snapshot, user_room
from tatanyisani.services.duels.session import DuelSession
from tatanyisani.services.duels.settlement import settle
from typing import Dict


# One duel view per socket connection
_sid_to_session: Dict[str, DuelSession] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _join_as(challenge_id: str, user_id: int) -> dict:
    user = db.session.get(User, user_id)
    return challenge_snapshot(duel_challenges.attempt_join(challenge_id, user))


def _settle_as(challenge_id: str, user_id: int):
    receipt = settle(challenge_id, user_id)
    return receipt.to_dict() if receipt is not None else None


def _exit_emitter(challenge_id: str):
    # Sessions are also fed from other clients' requests; emit to this sid explicitly
    sid = _get_sid()
    namespace = request.namespace or NAMESPACE

    def _on_exit(reason, detail=None):
        payload = {'challenge_id': challenge_id, 'reason': reason}
        if isinstance(detail, dict):
            payload['receipt'] = detail
        elif detail is not None:
            payload['message'] = str(detail)
        current_app.logger.info(f"[duel-exit] challenge={challenge_id} sid={sid} reason={reason}")
        socketio.emit('duel_exit', payload, to=sid, namespace=namespace)
    return _on_exit


def _feed_sessions(challenge_id: str, payload: dict) -> None:
    """Hand a committed snapshot to every duel session watching that challenge."""
    for session in list(_sid_to_session.values()):
        if session.challenge_id == challenge_id:
            session.on_snapshot(payload)


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    _sid_to_session.pop(_get_sid(), None)


def handle_watch_challenge(data):
    challenge_id = (data or {}).get('challenge_id')
    if not challenge_id:
        emit('error', {'message': 'challenge_id is required'})
        return
    join_room(challenge_room(challenge_id))

    challenge = db.session.get(Challenge, challenge_id)
    if challenge is None:
        emit('challenge_missing', {'challenge_id': challenge_id})
        return
    snapshot = challenge_snapshot(challenge)
    emit('challenge_state', snapshot)

    if not current_user.is_authenticated:
        return
    session = DuelSession(
        challenge_id,
        current_user.id,
        join=_join_as,
        settle=_settle_as,
        on_exit=_exit_emitter(challenge_id),
        duration=int(current_app.config.get('DUEL_DURATION_SEC', 60)),
    )
    _sid_to_session[_get_sid()] = session
    session.on_snapshot(snapshot)


def handle_unwatch_challenge(data):
    challenge_id = (data or {}).get('challenge_id')
    if not challenge_id:
        emit('error', {'message': 'challenge_id is required'})
        return
    leave_room(challenge_room(challenge_id))
    session = _sid_to_session.get(_get_sid())
    if session and session.challenge_id == challenge_id:
        _sid_to_session.pop(_get_sid(), None)
    emit('left', {'room': challenge_room(challenge_id)})


def handle_time_up(data):
    session = _sid_to_session.get(_get_sid())
    challenge_id = (data or {}).get('challenge_id')
    if session is None or (challenge_id and session.challenge_id != challenge_id):
        emit('error', {'message': 'Not watching this challenge'})
        return
    # The client's countdown is a hint; the server clock decides
    left = session.tick(countdown.server_now())
    if not session.has_ended:
        emit('time_left', {'challenge_id': session.challenge_id, 'remaining': left})


def handle_watch_lobby(data=None):
    if not current_user.is_authenticated:
        emit('error', {'message': 'Login required'})
        return
    join_room(user_room(current_user.id))
    emit('lobby_state', [challenge_snapshot(c) for c in duel_challenges.list_challenges_for(current_user.id)])


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'watch_challenge': handle_watch_challenge,
        'unwatch_challenge': handle_unwatch_challenge,
        'time_up': handle_time_up,
        'watch_lobby': handle_watch_lobby,
        'ping': handle_ping,
    }
    for name, handler in handlers.items():
        socketio.on_event(name, handler, namespace='/ws')
    add_snapshot_listener(_feed_sessions)

    if testing:
        for name, handler in handlers.items():
            socketio.on_event(name, handler, namespace='/')
