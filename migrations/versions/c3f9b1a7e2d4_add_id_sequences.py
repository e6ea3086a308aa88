"""add id_sequences (high-water marks for issued ids)

Revision ID: c3f9b1a7e2d4
Revises: a1c5d2e8f301
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "c3f9b1a7e2d4"
down_revision: Union[str, Sequence[str], None] = "a1c5d2e8f301"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    if "id_sequences" in set(inspect(bind).get_table_names()):
        return
    op.create_table(
        "id_sequences",
        sa.Column("prefix", sa.String(16), primary_key=True, nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )
    # Vehicles and purchases already in the table count as issued.
    rows = bind.execute(
        sa.text("SELECT id FROM vehicles UNION SELECT vehicle_id FROM purchases WHERE vehicle_id IS NOT NULL")
    ).scalars()
    highest = 0
    for vid in rows:
        _, _, suffix = (vid or "").rpartition("-")
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    if highest:
        op.bulk_insert(
            sa.table("id_sequences", sa.column("prefix", sa.String), sa.column("last_value", sa.Integer)),
            [{"prefix": "veh", "last_value": highest}],
        )


def downgrade() -> None:
    op.drop_table("id_sequences")
