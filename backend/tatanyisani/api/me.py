from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from tatanyisani.services.duels import ledger


me = Blueprint('me', __name__)


@me.route('', methods=['GET'])
@login_required
def whoami():
    return jsonify({
        'id': current_user.id,
        'username': current_user.username,
        'name': current_user.name,
        'points': ledger.balance(current_user.id),
    })
