"""create user, challenge and participant tables

Revision ID: 3c7a9e21b4d0
Revises:
Create Date: 2026-09-02 10:12:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c7a9e21b4d0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=True),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('points >= 0', name='ck_user_points_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'challenge',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('stake', sa.Integer(), nullable=False),
        sa.Column('pot', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('start_time', sa.Float(), nullable=True),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.Column('winner_id', sa.Integer(), nullable=True),
        sa.CheckConstraint('pot >= 0', name='ck_challenge_pot_non_negative'),
        sa.CheckConstraint('stake > 0', name='ck_challenge_stake_positive'),
        sa.ForeignKeyConstraint(['creator_id'], ['user.id']),
        sa.ForeignKeyConstraint(['winner_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_challenge_creator_id', 'challenge', ['creator_id'])
    op.create_index('ix_challenge_status', 'challenge', ['status'])
    op.create_index('ix_challenge_created_at', 'challenge', ['created_at'])

    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('challenge_id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('seat', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('joined_at', sa.Float(), nullable=False),
        sa.CheckConstraint('seat IN (0, 1)', name='ck_participant_seat'),
        sa.CheckConstraint('score >= 0', name='ck_participant_score_non_negative'),
        sa.ForeignKeyConstraint(['challenge_id'], ['challenge.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('challenge_id', 'user_id', name='uq_participant_challenge_user'),
        sa.UniqueConstraint('challenge_id', 'seat', name='uq_participant_challenge_seat'),
    )
    op.create_index('ix_participant_challenge_id', 'participant', ['challenge_id'])
    op.create_index('ix_participant_user_id', 'participant', ['user_id'])


def downgrade():
    op.drop_table('participant')
    op.drop_table('challenge')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
