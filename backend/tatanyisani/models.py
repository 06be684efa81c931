from tatanyisani import db, bcrypt
from flask_login import UserMixin
import time
import uuid

class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(64), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)
    # LP balance; only ever changed through tatanyisani.services.duels.ledger
    points = db.Column(db.Integer, default=0, nullable=False)

    __table_args__ = (
        db.CheckConstraint('points >= 0', name='ck_user_points_non_negative'),
    )

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def name(self):
        return self.display_name or self.username

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'name': self.name,
            'points': self.points,
        }


def generate_challenge_id():
    """Opaque, unguessable id used in shareable duel links."""
    return uuid.uuid4().hex


class Challenge(db.Model):
    __tablename__ = 'challenge'
    id = db.Column(db.String(32), primary_key=True, default=generate_challenge_id)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    status = db.Column(db.String(16), default='pending', nullable=False, index=True)  # pending, active, completed
    stake = db.Column(db.Integer, nullable=False)
    pot = db.Column(db.Integer, nullable=False)
    # Server epoch seconds
    created_at = db.Column(db.Float, default=time.time, nullable=False, index=True)
    start_time = db.Column(db.Float, nullable=True)
    completed_at = db.Column(db.Float, nullable=True)
    winner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    # Bumped on every structural write; join commits are conditioned on it
    version = db.Column(db.Integer, default=1, nullable=False)

    participants = db.relationship(
        'Participant',
        back_populates='challenge',
        order_by='Participant.seat',
        cascade='all, delete-orphan',
    )

    __table_args__ = (
        db.CheckConstraint('pot >= 0', name='ck_challenge_pot_non_negative'),
        db.CheckConstraint('stake > 0', name='ck_challenge_stake_positive'),
    )

    @property
    def players(self):
        return [p.user_id for p in self.participants]

    def has_player(self, user_id):
        return any(p.user_id == user_id for p in self.participants)

    def participant_for(self, user_id):
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    def opponent_of(self, user_id):
        for p in self.participants:
            if p.user_id != user_id:
                return p
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'creator_id': self.creator_id,
            'status': self.status,
            'players': self.players,
            # JSON object keys are strings
            'scores': {str(p.user_id): p.result_score for p in self.participants},
            'names': {str(p.user_id): p.name for p in self.participants},
            'stake': self.stake,
            'pot': self.pot,
            'created_at': self.created_at,
            'start_time': self.start_time,
            'completed_at': self.completed_at,
            'winner_id': self.winner_id,
        }


class Participant(db.Model):
    __tablename__ = 'participant'
    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.String(32), db.ForeignKey('challenge.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    seat = db.Column(db.Integer, nullable=False)  # 0 = creator, 1 = joiner
    # Captured at join time, not re-synced
    name = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    # Copied from score when the duel completes; settlement only reads this
    final_score = db.Column(db.Integer, nullable=True)
    joined_at = db.Column(db.Float, default=time.time, nullable=False)

    challenge = db.relationship('Challenge', back_populates='participants')

    __table_args__ = (
        db.UniqueConstraint('challenge_id', 'user_id', name='uq_participant_challenge_user'),
        db.UniqueConstraint('challenge_id', 'seat', name='uq_participant_challenge_seat'),
        db.CheckConstraint('seat IN (0, 1)', name='ck_participant_seat'),
        db.CheckConstraint('score >= 0', name='ck_participant_score_non_negative'),
    )

    @property
    def result_score(self):
        return self.score if self.final_score is None else self.final_score


class Settlement(db.Model):
    """Receipt of one participant's payout for one challenge."""
    __tablename__ = 'settlement'
    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.String(32), db.ForeignKey('challenge.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    outcome = db.Column(db.String(8), nullable=False)  # win, loss, draw
    payout = db.Column(db.Integer, nullable=False)
    settled_at = db.Column(db.Float, default=time.time, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('challenge_id', 'user_id', name='uq_settlement_challenge_user'),
    )

    def to_dict(self):
        return {
            'challenge_id': self.challenge_id,
            'user_id': self.user_id,
            'outcome': self.outcome,
            'payout': self.payout,
            'settled_at': self.settled_at,
        }
