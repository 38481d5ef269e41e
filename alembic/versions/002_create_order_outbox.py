"""002: create order_outbox table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE order_outbox (
            id                  VARCHAR(64)     PRIMARY KEY,
            order_id            VARCHAR(64)     NOT NULL REFERENCES orders (order_id),
            kind                VARCHAR(30)     NOT NULL,
            payload             JSONB           NOT NULL DEFAULT '{}',
            status              VARCHAR(20)     NOT NULL DEFAULT 'pending',
            attempts            INT             NOT NULL DEFAULT 0,
            last_error          TEXT,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            next_attempt_at     TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            delivered_at        TIMESTAMPTZ,
            CONSTRAINT ck_outbox_kind       CHECK (
                kind IN ('conversation_create', 'conversation_message', 'notification', 'payment_release')
            ),
            CONSTRAINT ck_outbox_status     CHECK (status IN ('pending', 'delivered', 'dead')),
            CONSTRAINT ck_outbox_attempts   CHECK (attempts >= 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_outbox_due
        ON order_outbox (next_attempt_at, created_at, id)
        WHERE status = 'pending';
    """)
    op.execute("CREATE INDEX idx_outbox_order ON order_outbox (order_id, created_at);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS order_outbox;")
