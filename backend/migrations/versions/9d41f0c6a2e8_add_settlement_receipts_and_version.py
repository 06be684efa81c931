"""add settlement receipts and challenge.version

Revision ID: 9d41f0c6a2e8
Revises: 3c7a9e21b4d0
Create Date: 2026-09-09 16:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9d41f0c6a2e8'
down_revision = '3c7a9e21b4d0'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    cols = {c['name'] for c in insp.get_columns('challenge')}
    if 'version' not in cols:
        with op.batch_alter_table('challenge') as batch_op:
            batch_op.add_column(sa.Column('version', sa.Integer(), nullable=False, server_default='1'))

    if 'settlement' not in set(insp.get_table_names()):
        op.create_table(
            'settlement',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('challenge_id', sa.String(length=32), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('outcome', sa.String(length=8), nullable=False),
            sa.Column('payout', sa.Integer(), nullable=False),
            sa.Column('settled_at', sa.Float(), nullable=False),
            sa.ForeignKeyConstraint(['challenge_id'], ['challenge.id']),
            sa.ForeignKeyConstraint(['user_id'], ['user.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('challenge_id', 'user_id', name='uq_settlement_challenge_user'),
        )
        op.create_index('ix_settlement_challenge_id', 'settlement', ['challenge_id'])


def downgrade():
    op.drop_index('ix_settlement_challenge_id', table_name='settlement')
    op.drop_table('settlement')
    with op.batch_alter_table('challenge') as batch_op:
        batch_op.drop_column('version')
