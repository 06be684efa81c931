"""add participant.final_score

Revision ID: 5e2b8d7c1f93
Revises: 9d41f0c6a2e8
Create Date: 2026-10-18 10:15:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5e2b8d7c1f93'
down_revision = '9d41f0c6a2e8'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    cols = {c['name'] for c in insp.get_columns('participant')}
    if 'final_score' not in cols:
        with op.batch_alter_table('participant') as batch_op:
            batch_op.add_column(sa.Column('final_score', sa.Integer(), nullable=True))

    # Duels that already finished keep the scores they ended with
    op.execute(
        "UPDATE participant SET final_score = score "
        "WHERE final_score IS NULL AND challenge_id IN "
        "(SELECT id FROM challenge WHERE status = 'completed')"
    )


def downgrade():
    with op.batch_alter_table('participant') as batch_op:
        batch_op.drop_column('final_score')
