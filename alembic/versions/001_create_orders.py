"""001: create orders table

Revision ID: 001
Revises: 
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Milestones, payments and timeline are owned by the order and written with it
    op.execute("""
        CREATE TABLE orders (
            order_id            VARCHAR(64)     PRIMARY KEY,
            version             INT             NOT NULL DEFAULT 1,
            type                VARCHAR(20)     NOT NULL,
            title               VARCHAR(200)    NOT NULL,
            description         TEXT            NOT NULL DEFAULT '',
            status              VARCHAR(20)     NOT NULL DEFAULT 'pending',
            progress            SMALLINT        NOT NULL DEFAULT 0,
            priority            VARCHAR(10)     NOT NULL DEFAULT 'medium',
            total_amount        BIGINT          NOT NULL,
            currency            CHAR(3)         NOT NULL,
            platform_fee_bps    INT             NOT NULL,
            category            VARCHAR(100)    NOT NULL DEFAULT '',
            skills              JSONB           NOT NULL DEFAULT '[]',
            requirements        JSONB           NOT NULL DEFAULT '[]',
            metadata            JSONB           NOT NULL DEFAULT '{}',
            client_id           VARCHAR(64)     NOT NULL,
            client_name         VARCHAR(200)    NOT NULL DEFAULT 'Client',
            client_avatar       TEXT,
            worker_id           VARCHAR(64),
            worker_name         VARCHAR(200),
            worker_avatar       TEXT,
            worker_type         VARCHAR(20)     NOT NULL,
            milestones          JSONB           NOT NULL DEFAULT '[]',
            payments            JSONB           NOT NULL DEFAULT '[]',
            timeline            JSONB           NOT NULL DEFAULT '[]',
            conversation_id     VARCHAR(64),
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            started_at          TIMESTAMPTZ,
            completed_at        TIMESTAMPTZ,
            deadline            TIMESTAMPTZ,
            last_activity       TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_orders_version        CHECK (version >= 1),
            CONSTRAINT ck_orders_type           CHECK (type IN ('ai_order', 'job', 'project', 'solution')),
            CONSTRAINT ck_orders_status         CHECK (
                status IN ('pending', 'in_progress', 'review', 'revision', 'completed', 'cancelled', 'paused')
            ),
            CONSTRAINT ck_orders_progress       CHECK (progress BETWEEN 0 AND 100),
            CONSTRAINT ck_orders_priority       CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
            CONSTRAINT ck_orders_total_amount   CHECK (total_amount > 0),
            CONSTRAINT ck_orders_fee_bps        CHECK (platform_fee_bps BETWEEN 0 AND 10000),
            CONSTRAINT ck_orders_worker_type    CHECK (worker_type IN ('ai_specialist', 'freelancer')),
            CONSTRAINT ck_orders_parties        CHECK (worker_id IS NULL OR worker_id <> client_id)
        );
    """)
    # Keyset listing: (party, last_activity DESC, order_id DESC)
    op.execute(
        "CREATE INDEX idx_orders_client_activity ON orders (client_id, last_activity DESC, order_id DESC);"
    )
    op.execute("""
        CREATE INDEX idx_orders_worker_activity
        ON orders (worker_id, last_activity DESC, order_id DESC)
        WHERE worker_id IS NOT NULL;
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS orders;")
