"""Allow at most one live QR token per order

Revision ID: b72e5d10a9c3
Revises: 3f9a1c2d7b64
Create Date: 2026-10-19 14:03:52.771920

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b72e5d10a9c3'
down_revision: Union[str, Sequence[str], None] = '3f9a1c2d7b64'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Revoke all but the newest live token of each order before the index exists
    op.execute(
        """
        UPDATE payment_qr_tokens
        SET revoked_at = CURRENT_TIMESTAMP
        WHERE consumed = false
          AND revoked_at IS NULL
          AND EXISTS (
              SELECT 1 FROM payment_qr_tokens AS newer
              WHERE newer.order_id = payment_qr_tokens.order_id
                AND newer.consumed = false
                AND newer.revoked_at IS NULL
                AND newer.issued_at > payment_qr_tokens.issued_at
          )
        """
    )
    op.create_index(
        'uq_qr_tokens_live_per_order',
        'payment_qr_tokens',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text('consumed = false AND revoked_at IS NULL'),
        sqlite_where=sa.text('consumed = 0 AND revoked_at IS NULL'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_qr_tokens_live_per_order', table_name='payment_qr_tokens')
