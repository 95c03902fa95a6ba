############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# 002_ai_usage_logs.py: Add per-dispatch AI usage log and model call counters
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Add ai_usage_logs table and call counters on ai_models

Revision ID: 002
Revises: 001
Create Date: 2026-10-20 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('ai_models', sa.Column('total_calls', sa.BigInteger(), nullable=False, server_default='0'))
    op.add_column('ai_models', sa.Column('success_calls', sa.BigInteger(), nullable=False, server_default='0'))

    op.create_table(
        'ai_usage_logs',
        sa.Column(
            'id',
            sa.BigInteger().with_variant(sa.Integer(), 'sqlite'),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('ai_providers.id'), nullable=True),
        sa.Column('model_id', sa.Integer(), sa.ForeignKey('ai_models.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('tool_id', sa.Integer(), sa.ForeignKey('tools.id'), nullable=True),
        sa.Column('status', sa.Enum('success', 'failed', name='aiusagestatus'), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('input_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('output_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost', sa.Numeric(12, 6), nullable=False, server_default='0'),
        sa.Column('latency_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('used_fallback', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('fallback_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_ai_usage_logs_model_created', 'ai_usage_logs', ['model_id', 'created_at'])
    op.create_index('ix_ai_usage_logs_status_created', 'ai_usage_logs', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_ai_usage_logs_status_created', table_name='ai_usage_logs')
    op.drop_index('ix_ai_usage_logs_model_created', table_name='ai_usage_logs')
    op.drop_table('ai_usage_logs')
    op.drop_column('ai_models', 'success_calls')
    op.drop_column('ai_models', 'total_calls')
