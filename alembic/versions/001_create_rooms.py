"""001: create rooms table

Participants (with their positions), the prize table and the winners are
embedded JSONB documents; the row is read and written back as a whole, guarded
by ``version``.

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
    op.execute("""
        CREATE TABLE rooms (
            id                  VARCHAR(64)     PRIMARY KEY,
            name                VARCHAR(100)    NOT NULL,
            entry_fee           INT             NOT NULL DEFAULT 0,
            capacity            SMALLINT        NOT NULL DEFAULT 25,
            competition_date    DATE            NOT NULL,
            start_time          VARCHAR(5)      NOT NULL DEFAULT '08:00',
            end_time            VARCHAR(5)      NOT NULL DEFAULT '17:00',
            status              VARCHAR(20)     NOT NULL DEFAULT 'PENDING',
            total_prize_pool    INT             NOT NULL DEFAULT 0,
            prize_distribution  JSONB           NOT NULL DEFAULT '[]'::jsonb,
            participants        JSONB           NOT NULL DEFAULT '[]'::jsonb,
            winners             JSONB           NOT NULL DEFAULT '[]'::jsonb,
            version             INT             NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_rooms_entry_fee_gte_0   CHECK (entry_fee >= 0),
            CONSTRAINT ck_rooms_capacity          CHECK (capacity BETWEEN 1 AND 100),
            CONSTRAINT ck_rooms_prize_pool_gte_0  CHECK (total_prize_pool >= 0),
            CONSTRAINT ck_rooms_participants_cap  CHECK (jsonb_array_length(participants) <= capacity),
            CONSTRAINT ck_rooms_status CHECK (
                status IN ('PENDING', 'ACTIVE', 'CLOSING', 'CLOSED')
            )
        )
    """)
    op.execute("CREATE INDEX idx_rooms_status_date ON rooms (status, competition_date)")
    op.execute(
        "CREATE INDEX idx_rooms_participants ON rooms USING GIN (participants jsonb_path_ops)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS rooms")
