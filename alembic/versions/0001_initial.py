"""draws, tickets, bonus drops, reward records and ops config

Revision ID: 0001_initial
Revises:
Create Date: 2025-06-01 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "draws",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column("day_bucket", TS, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("closes_at", TS, nullable=False),
        sa.Column("pool_amount", sa.BigInteger(), nullable=False),
        sa.Column("resolved_at", TS, nullable=True),
        sa.Column("winner_ticket_id", ID, nullable=True),
        sa.Column("claim_token", sa.String(32), nullable=True),
        sa.Column("claimed_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_draws"),
        sa.UniqueConstraint("day_bucket", name="uq_draws_day_bucket"),
    )
    op.create_index("ix_draws_status_closes_at", "draws", ["status", "closes_at"])

    op.create_table(
        "tickets",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("wallet_address", sa.String(128), nullable=False),
        sa.Column("draw_id", ID, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_tickets"),
        sa.ForeignKeyConstraint(
            ["draw_id"], ["draws.id"],
            name="fk_tickets_draw_id_draws", ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("code", name="uq_tickets_code"),
        sa.UniqueConstraint("draw_id", "wallet_address", name="uq_ticket_wallet_per_draw"),
    )
    op.create_index("ix_tickets_draw_id", "tickets", ["draw_id"])
    op.create_index("ix_tickets_draw_status", "tickets", ["draw_id", "status"])

    # draws <-> tickets is a cycle; the winner FK is added once both exist.
    with op.batch_alter_table("draws") as batch:
        batch.create_foreign_key(
            "fk_draws_winner_ticket_id_tickets",
            "tickets",
            ["winner_ticket_id"],
            ["id"],
            ondelete="SET NULL",
        )

    op.create_table(
        "bonus_drops",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column("draw_id", ID, nullable=False),
        sa.Column("label", sa.String(64), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("scheduled_at", TS, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("claim_token", sa.String(32), nullable=True),
        sa.Column("claimed_at", TS, nullable=True),
        sa.Column("fired_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_bonus_drops"),
        sa.ForeignKeyConstraint(
            ["draw_id"], ["draws.id"],
            name="fk_bonus_drops_draw_id_draws", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_bonus_drops_draw_id", "bonus_drops", ["draw_id"])
    op.create_index("ix_bonus_drops_status_scheduled", "bonus_drops", ["status", "scheduled_at"])
    op.create_index("ix_bonus_drops_draw_created", "bonus_drops", ["draw_id", "created_at"])

    op.create_table(
        "reward_records",
        sa.Column("id", ID, primary_key=True, autoincrement=True),
        sa.Column("draw_id", ID, nullable=False),
        sa.Column("ticket_id", ID, nullable=False),
        sa.Column("bonus_drop_id", ID, nullable=True),
        sa.Column("kind", sa.String(8), nullable=False),
        sa.Column("label", sa.String(64), nullable=True),
        sa.Column("payout_amount", sa.BigInteger(), nullable=False),
        sa.Column("is_paid_out", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("settlement_ref", sa.String(128), nullable=True),
        sa.Column("paid_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_reward_records"),
        sa.ForeignKeyConstraint(
            ["draw_id"], ["draws.id"],
            name="fk_reward_records_draw_id_draws", ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["ticket_id"], ["tickets.id"],
            name="fk_reward_records_ticket_id_tickets", ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["bonus_drop_id"], ["bonus_drops.id"],
            name="fk_reward_records_bonus_drop_id_bonus_drops", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_reward_records_draw_id", "reward_records", ["draw_id"])
    op.create_index("ix_reward_records_ticket_id", "reward_records", ["ticket_id"])
    op.create_index("ix_reward_records_created", "reward_records", ["created_at"])
    op.create_index(
        "uq_reward_main_per_draw",
        "reward_records",
        ["draw_id"],
        unique=True,
        sqlite_where=sa.text("kind = 'MAIN'"),
        postgresql_where=sa.text("kind = 'MAIN'"),
    )
    op.create_index(
        "uq_reward_bonus_per_ticket_draw",
        "reward_records",
        ["ticket_id", "draw_id"],
        unique=True,
        sqlite_where=sa.text("kind = 'BONUS'"),
        postgresql_where=sa.text("kind = 'BONUS'"),
    )

    op.create_table(
        "ops_config",
        sa.Column("singleton", sa.String(16), nullable=False),
        sa.Column("mode", sa.String(8), nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.PrimaryKeyConstraint("singleton", name="pk_ops_config"),
    )


def downgrade() -> None:
    op.drop_table("ops_config")
    op.drop_index("uq_reward_bonus_per_ticket_draw", table_name="reward_records")
    op.drop_index("uq_reward_main_per_draw", table_name="reward_records")
    op.drop_index("ix_reward_records_created", table_name="reward_records")
    op.drop_index("ix_reward_records_ticket_id", table_name="reward_records")
    op.drop_index("ix_reward_records_draw_id", table_name="reward_records")
    op.drop_table("reward_records")
    op.drop_index("ix_bonus_drops_draw_created", table_name="bonus_drops")
    op.drop_index("ix_bonus_drops_status_scheduled", table_name="bonus_drops")
    op.drop_index("ix_bonus_drops_draw_id", table_name="bonus_drops")
    op.drop_table("bonus_drops")
    with op.batch_alter_table("draws") as batch:
        batch.drop_constraint("fk_draws_winner_ticket_id_tickets", type_="foreignkey")
    op.drop_index("ix_tickets_draw_status", table_name="tickets")
    op.drop_index("ix_tickets_draw_id", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_draws_status_closes_at", table_name="draws")
    op.drop_table("draws")
