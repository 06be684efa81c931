from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from tatanyisani.services.duels import DuelError, WriteFailed
from tatanyisani.services.duels import challenges as svc
from tatanyisani.services.duels.events import challenge_snapshot
from tatanyisani.services.duels.settlement import settle as svc_settle


challenges = Blueprint('challenges', __name__)


@challenges.errorhandler(DuelError)
def handle_duel_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _parse_stake(raw):
    """Whole-number stake from JSON, or None when it is not one."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


@challenges.route('', methods=['POST'])
@login_required
def create_challenge():
    """Stake LP and open a new duel. Share the returned id with a friend."""
    data = request.get_json(silent=True) or {}
    stake = data.get('stake')
    if stake is not None:
        stake = _parse_stake(stake)
        if stake is None:
            return jsonify({'error': 'stake must be a whole number'}), 400
        if stake <= 0:
            return jsonify({'error': 'stake must be positive'}), 400
    challenge = svc.create_challenge(current_user, stake)
    return jsonify(challenge_snapshot(challenge)), 201


@challenges.route('', methods=['GET'])
@login_required
def my_challenges():
    return jsonify([challenge_snapshot(c) for c in svc.list_challenges_for(current_user.id)])


@challenges.route('/open', methods=['GET'])
@login_required
def open_challenges():
    return jsonify([challenge_snapshot(c) for c in svc.list_open_challenges(current_user.id)])


@challenges.route('/<string:challenge_id>', methods=['GET'])
def get_challenge(challenge_id):
    return jsonify(challenge_snapshot(svc.get_challenge(challenge_id)))


@challenges.route('/<string:challenge_id>/join', methods=['POST'])
@login_required
def join_challenge(challenge_id):
    challenge = svc.attempt_join(challenge_id, current_user)
    return jsonify(challenge_snapshot(challenge))


@challenges.route('/<string:challenge_id>/score', methods=['POST'])
@login_required
def score(challenge_id):
    try:
        challenge = svc.record_score(challenge_id, current_user.id)
    except WriteFailed:
        # Best effort: a lost point is not retried
        current_app.logger.warning(f"[score-dropped] challenge={challenge_id} user={current_user.id}")
        return jsonify({'ok': False}), 202
    return jsonify(challenge_snapshot(challenge))


@challenges.route('/<string:challenge_id>/settle', methods=['POST'])
@login_required
def settle(challenge_id):
    receipt = svc_settle(challenge_id, current_user.id)
    if receipt is None:
        return jsonify({'settled': False})
    payload = receipt.to_dict()
    payload['settled'] = True
    payload['challenge'] = challenge_snapshot(svc.get_challenge(challenge_id))
    return jsonify(payload)
