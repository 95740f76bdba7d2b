"""add mfa_factors, mfa_challenges and mfa_events tables

Revision ID: 001_mfa_factors_and_challenges
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_mfa_factors_and_challenges'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'mfa_factors',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('factor_type', sa.String(16), nullable=False),
        sa.Column('secret_encrypted', sa.Text(), nullable=False),
        sa.Column('friendly_name', sa.String(255), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('created_at_utc', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at_utc', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_verified_at_utc', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_accepted_step', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'friendly_name', name='uq_mfa_factors_user_friendly_name'),
    )
    op.create_index('ix_mfa_factors_user_id', 'mfa_factors', ['user_id'])
    op.create_index('ix_mfa_factors_user_status', 'mfa_factors', ['user_id', 'status'])
    op.create_index(
        'uq_mfa_factors_user_type_pending',
        'mfa_factors',
        ['user_id', 'factor_type'],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        'mfa_challenges',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('factor_id', sa.String(36), nullable=False),
        sa.Column('created_at_utc', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at_utc', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('consumed_at_utc', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_step', sa.BigInteger(), nullable=True),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['factor_id'],
            ['mfa_factors.id'],
            name='mfa_challenges_factor_fk',
            ondelete='CASCADE'
        ),
    )
    op.create_index('ix_mfa_challenges_factor_id', 'mfa_challenges', ['factor_id'])
    op.create_index('ix_mfa_challenges_expires_at_utc', 'mfa_challenges', ['expires_at_utc'])

    op.create_table(
        'mfa_events',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(16), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('factor_id', sa.String(36), nullable=True),
        sa.Column('challenge_id', sa.String(36), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_code', sa.String(32), nullable=True),
        sa.Column('timestamp_utc', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mfa_events_user_id', 'mfa_events', ['user_id'])
    op.create_index('ix_mfa_events_factor_id', 'mfa_events', ['factor_id'])
    op.create_index('ix_mfa_events_timestamp_utc', 'mfa_events', ['timestamp_utc'])


def downgrade() -> None:
    op.drop_index('ix_mfa_events_timestamp_utc', table_name='mfa_events')
    op.drop_index('ix_mfa_events_factor_id', table_name='mfa_events')
    op.drop_index('ix_mfa_events_user_id', table_name='mfa_events')
    op.drop_table('mfa_events')
    op.drop_index('ix_mfa_challenges_expires_at_utc', table_name='mfa_challenges')
    op.drop_index('ix_mfa_challenges_factor_id', table_name='mfa_challenges')
    op.drop_table('mfa_challenges')
    op.drop_index('uq_mfa_factors_user_type_pending', table_name='mfa_factors')
    op.drop_index('ix_mfa_factors_user_status', table_name='mfa_factors')
    op.drop_index('ix_mfa_factors_user_id', table_name='mfa_factors')
    op.drop_table('mfa_factors')
