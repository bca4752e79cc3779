"""add session_result archive for ended live sessions

Revision ID: b81f04c6d3e2
Revises: 5a7c1e9d2b40
Create Date: 2026-09-09 16:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b81f04c6d3e2'
down_revision = '5a7c1e9d2b40'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'session_result' in set(insp.get_table_names()):
        return
    op.create_table(
        'session_result',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quiz.id'), nullable=True),
        sa.Column('end_reason', sa.String(length=64), nullable=True),
        sa.Column('participant_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('leaderboard', sa.Text(), nullable=False),
        sa.Column('answers', sa.Text(), nullable=False),
        sa.Column('question_stats', sa.Text(), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_session_result_session_id', 'session_result', ['session_id'], unique=True)


def downgrade():
    op.drop_index('ix_session_result_session_id', table_name='session_result')
    op.drop_table('session_result')
