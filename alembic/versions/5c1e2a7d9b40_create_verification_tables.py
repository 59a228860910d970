"""create verification tables

Revision ID: 5c1e2a7d9b40
Revises:
Create Date: 2026-10-17 10:12:44.201731
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e2a7d9b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

verification_method = sa.Enum('SMS', 'TOTP', name='verificationmethod')
session_state = sa.Enum('PENDING', 'VERIFIED', 'EXPIRED', 'LOCKED_OUT', 'CANCELLED', name='sessionstate')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'subjects',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('totp_secret', sa.String(), nullable=True),
        sa.Column('totp_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('totp_enrolled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        'verification_sessions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('subject_id', sa.String(), nullable=False),
        sa.Column('method', verification_method, nullable=False),
        sa.Column('challenge_hash', sa.String(), nullable=False, server_default=''),
        sa.Column('destination', sa.String(), nullable=True),
        sa.Column('action_type', sa.String(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('state', session_state, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('attempts >= 0', name='ck_verification_sessions_attempts'),
        sa.CheckConstraint('expires_at > created_at', name='ck_verification_sessions_expiry'),
    )
    op.create_index('ix_verification_sessions_subject_id', 'verification_sessions', ['subject_id'])
    op.create_index('ix_verification_sessions_state', 'verification_sessions', ['state'])
    op.create_index('ix_verification_sessions_expires_at', 'verification_sessions', ['expires_at'])

    op.create_table(
        'lockouts',
        sa.Column('subject_id', sa.String(), primary_key=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.String(), nullable=False),
    )
    op.create_table(
        'trusted_devices',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject_id', sa.String(), nullable=False),
        sa.Column('device_id', sa.String(), nullable=False),
        sa.Column('device_name', sa.String(), nullable=False),
        sa.Column('trusted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('subject_id', 'device_id', name='uq_trusted_devices_subject_device'),
    )
    op.create_index('ix_trusted_devices_subject_id', 'trusted_devices', ['subject_id'])
    op.create_index('ix_trusted_devices_expires_at', 'trusted_devices', ['expires_at'])

    op.create_table(
        'authorized_actions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('subject_id', sa.String(), nullable=False),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('authorized_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_authorized_actions_subject_id', 'authorized_actions', ['subject_id'])
    op.create_index('ix_authorized_actions_action_type', 'authorized_actions', ['action_type'])

    op.create_table(
        'backup_codes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject_id', sa.String(), nullable=False),
        sa.Column('code_hash', sa.String(), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_backup_codes_subject_id', 'backup_codes', ['subject_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('subject_id', sa.String(), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('severity', sa.String(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
    )
    op.create_index('ix_audit_logs_subject_id', 'audit_logs', ['subject_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('audit_logs')
    op.drop_table('backup_codes')
    op.drop_table('authorized_actions')
    op.drop_table('trusted_devices')
    op.drop_table('lockouts')
    op.drop_table('verification_sessions')
    op.drop_table('subjects')
    session_state.drop(op.get_bind(), checkfirst=True)
    verification_method.drop(op.get_bind(), checkfirst=True)
