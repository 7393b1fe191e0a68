"""Create tasks table

Revision ID: 001_create_tasks_table
Revises:
Create Date: 2026-10-18

One row per uploaded image: status, original blob key, the ordered list of
requested operations and the creation time.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_create_tasks_table'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PROCESSING'),
        sa.Column('original_path', sa.String(), nullable=False),
        sa.Column('requested_operations', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_tasks_status', 'tasks', ['status'])


def downgrade() -> None:
    op.drop_index('ix_tasks_status', table_name='tasks')
    op.drop_table('tasks')
