"""Add total_is_explicit to boq_items

Revision ID: 8c2d4e61a9f3
Revises: 3f1a9c2e7b40
Create Date: 2026-10-19 15:40:02.114873

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8c2d4e61a9f3"
down_revision: Union[str, None] = "3f1a9c2e7b40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Imported lump sums keep their total across later edits
    op.add_column(
        "boq_items",
        sa.Column("total_is_explicit", sa.Boolean(), nullable=False, server_default=sa.false()),
    )


def downgrade() -> None:
    op.drop_column("boq_items", "total_is_explicit")
