"""initial settlement schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from datetime import datetime, timezone
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
MONEY = sa.Numeric(20, 9)


def upgrade() -> None:
    op.create_table(
        "players",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("wallet_address", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_players")),
    )
    op.create_index(
        op.f("ix_players_wallet_address"), "players", ["wallet_address"], unique=True
    )

    op.create_table(
        "draws",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("winning_numbers", sa.JSON(), nullable=False),
        sa.Column("powerball", sa.Integer(), nullable=False),
        sa.Column("drawn_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draws")),
    )
    op.create_index(op.f("ix_draws_drawn_at"), "draws", ["drawn_at"], unique=False)

    op.create_table(
        "pot",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("current_balance", MONEY, nullable=False),
        sa.Column("total_tickets_sold", sa.Integer(), nullable=False),
        sa.Column("total_revenue", MONEY, nullable=False),
        sa.Column("cycle_tickets_sold", sa.Integer(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "current_balance >= 0", name=op.f("ck_pot_balance_non_negative")
        ),
        sa.CheckConstraint("id = 1", name=op.f("ck_pot_singleton")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_pot")),
    )

    op.create_table(
        "settlement_locks",
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("holder", sa.String(length=64), nullable=True),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("name", name=op.f("pk_settlement_locks")),
    )

    op.create_table(
        "tickets",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("player_id", ID_TYPE, nullable=False),
        sa.Column("numbers", sa.JSON(), nullable=False),
        sa.Column("powerball", sa.Integer(), nullable=False),
        sa.Column("transaction_hash", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["player_id"],
            ["players.id"],
            name=op.f("fk_tickets_player_id_players"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tickets")),
    )
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"], unique=False)
    op.create_index(op.f("ix_tickets_player_id"), "tickets", ["player_id"], unique=False)
    op.create_index(
        op.f("ix_tickets_transaction_hash"), "tickets", ["transaction_hash"], unique=False
    )

    op.create_table(
        "settlement_runs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("draw_id", sa.Integer(), nullable=True),
        sa.Column("winner_count", sa.Integer(), nullable=False),
        sa.Column("total_allocated", MONEY, nullable=False),
        sa.Column("total_disbursed", MONEY, nullable=False),
        sa.Column("failure_stage", sa.String(length=20), nullable=True),
        sa.Column("failure_kind", sa.String(length=40), nullable=True),
        sa.Column("failure_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["draw_id"],
            ["draws.id"],
            name=op.f("fk_settlement_runs_draw_id_draws"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_settlement_runs")),
    )
    op.create_index(
        op.f("ix_settlement_runs_draw_id"), "settlement_runs", ["draw_id"], unique=False
    )

    op.create_table(
        "win_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticket_id", ID_TYPE, nullable=False),
        sa.Column("draw_id", sa.Integer(), nullable=False),
        sa.Column("match_count", sa.Integer(), nullable=False),
        sa.Column("powerball_match", sa.Boolean(), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("prize_amount", MONEY, nullable=False),
        sa.Column("disbursed", sa.Boolean(), nullable=False),
        sa.Column("payout_status", sa.String(length=24), nullable=False),
        sa.Column("payout_reference", sa.String(length=128), nullable=True),
        sa.Column("disbursed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "match_count >= 0 AND match_count <= 5",
            name=op.f("ck_win_records_match_count_range"),
        ),
        sa.CheckConstraint(
            "tier >= 1 AND tier <= 6", name=op.f("ck_win_records_tier_range")
        ),
        sa.CheckConstraint(
            "prize_amount >= 0", name=op.f("ck_win_records_prize_non_negative")
        ),
        sa.CheckConstraint(
            "payout_status IN ('pending','in_flight','paid','failed',"
            "'needs_reconciliation','zero_prize')",
            name=op.f("ck_win_records_payout_status_enum"),
        ),
        sa.ForeignKeyConstraint(
            ["draw_id"],
            ["draws.id"],
            name=op.f("fk_win_records_draw_id_draws"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["ticket_id"],
            ["tickets.id"],
            name=op.f("fk_win_records_ticket_id_tickets"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_win_records")),
        sa.UniqueConstraint("ticket_id", "draw_id", name="uq_win_record_ticket_draw"),
    )
    op.create_index(
        "ix_win_records_draw_disbursed", "win_records", ["draw_id", "disbursed"], unique=False
    )
    op.create_index(op.f("ix_win_records_draw_id"), "win_records", ["draw_id"], unique=False)
    op.create_index(
        op.f("ix_win_records_ticket_id"), "win_records", ["ticket_id"], unique=False
    )

    op.bulk_insert(
        sa.table(
            "pot",
            sa.column("id", sa.Integer()),
            sa.column("current_balance", MONEY),
            sa.column("total_tickets_sold", sa.Integer()),
            sa.column("total_revenue", MONEY),
            sa.column("cycle_tickets_sold", sa.Integer()),
            sa.column("last_updated", sa.DateTime(timezone=True)),
        ),
        [
            {
                "id": 1,
                "current_balance": 0,
                "total_tickets_sold": 0,
                "total_revenue": 0,
                "cycle_tickets_sold": 0,
                "last_updated": datetime.now(timezone.utc),
            }
        ],
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_win_records_ticket_id"), table_name="win_records")
    op.drop_index(op.f("ix_win_records_draw_id"), table_name="win_records")
    op.drop_index("ix_win_records_draw_disbursed", table_name="win_records")
    op.drop_table("win_records")
    op.drop_index(op.f("ix_settlement_runs_draw_id"), table_name="settlement_runs")
    op.drop_table("settlement_runs")
    op.drop_index(op.f("ix_tickets_transaction_hash"), table_name="tickets")
    op.drop_index(op.f("ix_tickets_player_id"), table_name="tickets")
    op.drop_index("ix_tickets_created_at", table_name="tickets")
    op.drop_table("tickets")
    op.drop_table("settlement_locks")
    op.drop_table("pot")
    op.drop_index(op.f("ix_draws_drawn_at"), table_name="draws")
    op.drop_table("draws")
    op.drop_index(op.f("ix_players_wallet_address"), table_name="players")
    op.drop_table("players")
