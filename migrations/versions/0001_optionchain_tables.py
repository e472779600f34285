"""Option-chain strike and summary tables

Revision ID: 0001_optionchain_tables
Revises:
Create Date: 2026-01-28

Adds:
- optionchain_strikes: one row per strike per run, CE and PE legs side by side
- optionchain_summary: one row per run with total/above/below OI buckets
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic
revision = "0001_optionchain_tables"
down_revision = None
branch_labels = None
depends_on = None

_LEG_COLUMNS = [
    ("symbol", sa.String(64)),
    ("label", sa.String(16)),
    ("ltp", sa.Numeric(14, 2)),
    ("bid", sa.Numeric(14, 2)),
    ("ask", sa.Numeric(14, 2)),
    ("open", sa.Numeric(14, 2)),
    ("high", sa.Numeric(14, 2)),
    ("low", sa.Numeric(14, 2)),
    ("prev_close", sa.Numeric(14, 2)),
    ("volume", sa.BigInteger()),
    ("oi", sa.BigInteger()),
    ("oi_change", sa.BigInteger()),
    ("spot_price", sa.Numeric(14, 2)),
    ("option_price", sa.Numeric(14, 2)),
    ("implied_volatility", sa.Numeric(10, 4)),
    ("days_to_expiry", sa.Numeric(10, 4)),
    ("delta", sa.Numeric(12, 6)),
    ("gamma", sa.Numeric(12, 6)),
    ("theta", sa.Numeric(12, 6)),
    ("vega", sa.Numeric(12, 6)),
]

_BUCKET_COLUMNS = ["ce_volume", "pe_volume", "ce_oi", "pe_oi", "ce_oi_change", "pe_oi_change"]


def _leg(prefix: str) -> list[sa.Column]:
    return [sa.Column(f"{prefix}_{name}", type_, nullable=True) for name, type_ in _LEG_COLUMNS]


def upgrade() -> None:
    op.create_table(
        "optionchain_strikes",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("server_name", sa.String(64), nullable=False),
        sa.Column("underlying", sa.String(32), nullable=False),
        sa.Column("underlying_ltp", sa.Numeric(14, 2)),
        sa.Column("underlying_prev_close", sa.Numeric(14, 2)),
        sa.Column("expiry_date", sa.String(16), nullable=False),
        sa.Column("atm_strike", sa.Numeric(14, 2)),
        sa.Column("strike", sa.Numeric(14, 2), nullable=False),
        *_leg("ce"),
        *_leg("pe"),
        sa.Column("lotsize", sa.Integer()),
        sa.Column("tick_size", sa.Numeric(10, 4)),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    # previous-OI lookups filter by contract and order by time within each symbol
    op.execute(
        """
        CREATE INDEX ix_optionchain_strikes_contract_ts
            ON optionchain_strikes (server_name, underlying, expiry_date, created_at DESC, id DESC);
    """
    )

    op.create_table(
        "optionchain_summary",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("server_name", sa.String(64), nullable=False),
        sa.Column("underlying", sa.String(32), nullable=False),
        sa.Column("underlying_ltp", sa.Numeric(14, 2)),
        sa.Column("expiry_date", sa.String(16), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        *[
            sa.Column(f"{bucket}_{name}", sa.BigInteger(), nullable=False, server_default="0")
            for bucket in ("total", "above", "below")
            for name in _BUCKET_COLUMNS
        ],
    )
    op.execute(
        """
        CREATE INDEX ix_optionchain_summary_contract_ts
            ON optionchain_summary (server_name, underlying, expiry_date, created_at DESC);
    """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS optionchain_summary")
    op.execute("DROP TABLE IF EXISTS optionchain_strikes")
