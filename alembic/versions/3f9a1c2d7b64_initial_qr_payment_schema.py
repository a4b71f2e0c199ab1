"""Initial schema with payment_qr_tokens and qr_scan_audit_log tables

Revision ID: 3f9a1c2d7b64
Revises:
Create Date: 2026-10-19 09:12:31.208114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2d7b64'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create payment_qr_tokens table
    op.create_table(
        'payment_qr_tokens',
        sa.Column('token_id', sa.String(length=50), nullable=False, comment='Token ID in format qr_<uuid>'),
        sa.Column('short_code', sa.String(length=8), nullable=False, comment='Human-typeable fallback code'),
        sa.Column('order_id', sa.BigInteger(), nullable=False, comment='Order this token authorizes payment for'),
        sa.Column('issued_at', sa.TIMESTAMP(timezone=True), nullable=False, comment='Token issue timestamp'),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False, comment='Token expiration timestamp'),
        sa.Column('revoked_at', sa.TIMESTAMP(timezone=True), nullable=True, comment='When a newer token for the same order superseded this one'),
        sa.Column('consumed', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Terminal once true'),
        sa.Column('consumed_at', sa.TIMESTAMP(timezone=True), nullable=True, comment='Claim timestamp'),
        sa.Column('consumed_by_device_id', sa.String(length=100), nullable=True, comment='Device that confirmed payment'),
        sa.Column('consumed_by_user_id', sa.String(length=100), nullable=True, comment='User that confirmed payment'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False, comment='Row creation timestamp'),
        sa.PrimaryKeyConstraint('token_id')
    )
    op.create_index('idx_qr_tokens_order_id', 'payment_qr_tokens', ['order_id'])
    op.create_index('idx_qr_tokens_short_code', 'payment_qr_tokens', ['short_code'])
    op.create_index('idx_qr_tokens_expires_at', 'payment_qr_tokens', ['expires_at'])
    op.create_index('idx_qr_tokens_consumed', 'payment_qr_tokens', ['consumed'])

    # Create qr_scan_audit_log table (insert-only)
    op.create_table(
        'qr_scan_audit_log',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False, comment='Audit log entry ID'),
        sa.Column('order_id', sa.BigInteger(), nullable=True),
        sa.Column('token_id', sa.String(length=50), nullable=True),
        sa.Column('short_code', sa.String(length=8), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False, comment='SCAN | CONFIRM_PAYMENT'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='SUCCESS | FAILED | EXPIRED | ...'),
        sa.Column('error_code', sa.String(length=50), nullable=True),
        sa.Column('error_message', sa.String(length=500), nullable=True),
        sa.Column('device_id', sa.String(length=100), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('client_ip', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('payment_method', sa.String(length=20), nullable=True),
        sa.Column('payment_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('scan_timestamp', sa.TIMESTAMP(timezone=True), nullable=False, comment='When the attempt was made'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_qr_audit_order_id', 'qr_scan_audit_log', ['order_id'])
    op.create_index('idx_qr_audit_token_id', 'qr_scan_audit_log', ['token_id'])
    op.create_index('idx_qr_audit_device_id', 'qr_scan_audit_log', ['device_id'])
    op.create_index('idx_qr_audit_status', 'qr_scan_audit_log', ['status'])
    op.create_index('idx_qr_audit_scan_timestamp', 'qr_scan_audit_log', ['scan_timestamp'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('qr_scan_audit_log')
    op.drop_table('payment_qr_tokens')
