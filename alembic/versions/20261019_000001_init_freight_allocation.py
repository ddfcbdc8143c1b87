"""Freight allocation core tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ACTIVE_ONLY = sa.text("status != 'CANCELLED'")


def upgrade() -> None:
    op.create_table(
        "regulatory_rate",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("cargo_category", sa.String(), nullable=False),
        sa.Column("axles", sa.Integer(), nullable=False),
        sa.Column("table_tier", sa.String(length=1), nullable=False),
        sa.Column("rate_per_km", sa.Numeric(12, 4), nullable=False),
        sa.Column("fixed_charge", sa.Numeric(12, 2), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("cargo_category", "axles", "table_tier", name="uq_regulatory_rate_key"),
    )

    op.create_table(
        "freight",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("producer_id", sa.String(), nullable=False, index=True),
        sa.Column("cargo_type", sa.String(), nullable=False),
        sa.Column("cargo_category", sa.String(), nullable=True),
        sa.Column("weight", sa.Numeric(12, 2), nullable=True),
        sa.Column("distance_km", sa.Numeric(10, 2), nullable=True),
        sa.Column("vehicle_axles", sa.Integer(), nullable=True),
        sa.Column("high_performance", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("vehicle_ownership", sa.String(), nullable=False, server_default="THIRD_PARTY"),
        sa.Column("table_tier", sa.String(length=1), nullable=True),
        sa.Column("required_trucks", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("accepted_trucks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="OPEN"),
        sa.Column("driver_id", sa.String(), nullable=True, index=True),
        sa.Column("pricing_type", sa.String(length=16), nullable=False, server_default="FIXED"),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("price_per_km", sa.Numeric(12, 4), nullable=True),
        sa.Column("price_per_ton", sa.Numeric(12, 4), nullable=True),
        sa.Column("minimum_regulatory_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("floor_computed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("required_trucks >= 1", name="ck_freight_required_trucks_positive"),
        sa.CheckConstraint(
            "accepted_trucks >= 0 AND accepted_trucks <= required_trucks",
            name="ck_freight_accepted_within_capacity",
        ),
    )

    op.create_table(
        "freight_proposal",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("freight_id", sa.String(), sa.ForeignKey("freight.id"), nullable=False, index=True),
        sa.Column("driver_id", sa.String(), nullable=False, index=True),
        sa.Column("proposed_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "freight_assignment",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("freight_id", sa.String(), sa.ForeignKey("freight.id"), nullable=False, index=True),
        sa.Column("driver_id", sa.String(), nullable=False, index=True),
        sa.Column("proposal_id", sa.String(), sa.ForeignKey("freight_proposal.id"), nullable=True, index=True),
        sa.Column("agreed_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("minimum_regulatory_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="ACCEPTED"),
        sa.Column("accepted_at", sa.DateTime(), nullable=False),
        sa.Column("delivery_reported_at", sa.DateTime(), nullable=True),
        sa.Column("delivery_confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("delivery_confirmed_by", sa.String(), nullable=True),
        sa.Column("payment_confirmed_by_producer_at", sa.DateTime(), nullable=True),
        sa.Column("payment_confirmed_by_driver_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "uq_freight_assignment_active_driver",
        "freight_assignment",
        ["freight_id", "driver_id"],
        unique=True,
        sqlite_where=_ACTIVE_ONLY,
        postgresql_where=_ACTIVE_ONLY,
    )

    op.create_table(
        "freight_assignment_status_event",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "assignment_id", sa.String(), sa.ForeignKey("freight_assignment.id"), nullable=False, index=True
        ),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "freight_history",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("freight_id", sa.String(), sa.ForeignKey("freight.id"), nullable=False, unique=True),
        sa.Column("final_status", sa.String(), nullable=True),
        sa.Column("required_trucks", sa.Integer(), nullable=True),
        sa.Column("total_agreed_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("snapshot", sa.JSON(), nullable=True),
        sa.Column("delivery_confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("delivery_confirmed_by", sa.String(), nullable=True),
        sa.Column("payment_confirmed_by_producer_at", sa.DateTime(), nullable=True),
        sa.Column("payment_confirmed_by_driver_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "freight_assignment_history",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "assignment_id", sa.String(), sa.ForeignKey("freight_assignment.id"), nullable=False, unique=True
        ),
        sa.Column("freight_id", sa.String(), sa.ForeignKey("freight.id"), nullable=False, index=True),
        sa.Column("driver_id", sa.String(), nullable=True),
        sa.Column("final_status", sa.String(), nullable=True),
        sa.Column("agreed_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("snapshot", sa.JSON(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("delivery_reported_at", sa.DateTime(), nullable=True),
        sa.Column("delivery_confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("delivery_confirmed_by", sa.String(), nullable=True),
        sa.Column("payment_confirmed_by_producer_at", sa.DateTime(), nullable=True),
        sa.Column("payment_confirmed_by_driver_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "payout_deduction",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("driver_id", sa.String(), nullable=False, index=True),
        sa.Column(
            "assignment_id", sa.String(), sa.ForeignKey("freight_assignment.id"), nullable=False, unique=True
        ),
        sa.Column("freight_id", sa.String(), sa.ForeignKey("freight.id"), nullable=False, index=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="BRL"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "freight_rating",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("freight_id", sa.String(), sa.ForeignKey("freight.id"), nullable=False, index=True),
        sa.Column(
            "assignment_id", sa.String(), sa.ForeignKey("freight_assignment.id"), nullable=False, index=True
        ),
        sa.Column("rater_id", sa.String(), nullable=False),
        sa.Column("rated_id", sa.String(), nullable=False, index=True),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("assignment_id", "rater_id", name="uq_freight_rating_rater"),
        sa.CheckConstraint("score >= 1 AND score <= 5", name="ck_freight_rating_score_range"),
    )

    op.create_table(
        "agreed_price_repair",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "assignment_id", sa.String(), sa.ForeignKey("freight_assignment.id"), nullable=False, unique=True
        ),
        sa.Column("freight_id", sa.String(), sa.ForeignKey("freight.id"), nullable=False, index=True),
        sa.Column("previous_agreed_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("corrected_agreed_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("repaired_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("agreed_price_repair")
    op.drop_table("freight_rating")
    op.drop_table("payout_deduction")
    op.drop_table("freight_assignment_history")
    op.drop_table("freight_history")
    op.drop_table("freight_assignment_status_event")
    op.drop_index("uq_freight_assignment_active_driver", table_name="freight_assignment")
    op.drop_table("freight_assignment")
    op.drop_table("freight_proposal")
    op.drop_table("freight")
    op.drop_table("regulatory_rate")
