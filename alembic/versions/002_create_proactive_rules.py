"""Create proactive_rules table

Revision ID: 002_create_proactive_rules
Revises: 001_create_tasks
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '002_create_proactive_rules'
down_revision: Union[str, None] = '001_create_tasks'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'proactive_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('trigger_type', sa.String(50), nullable=False),
        sa.Column('trigger_conditions', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('actions', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_index('ix_proactive_rules_user_id', 'proactive_rules', ['user_id'])
    op.create_index(
        'ix_proactive_rules_user_trigger',
        'proactive_rules',
        ['user_id', 'trigger_type', 'is_active'],
    )


def downgrade() -> None:
    op.drop_index('ix_proactive_rules_user_trigger', table_name='proactive_rules')
    op.drop_index('ix_proactive_rules_user_id', table_name='proactive_rules')
    op.drop_table('proactive_rules')
