"""scan_cursor_walk

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("scan_cursors", sa.Column("walk_lt", sa.BigInteger(), nullable=True))
    op.add_column("scan_cursors", sa.Column("walk_hash", sa.String(length=128), nullable=True))
    op.add_column("scan_cursors", sa.Column("walk_top_lt", sa.BigInteger(), nullable=True))
    op.add_column("scan_cursors", sa.Column("walk_top_hash", sa.String(length=128), nullable=True))


def downgrade() -> None:
    op.drop_column("scan_cursors", "walk_top_hash")
    op.drop_column("scan_cursors", "walk_top_lt")
    op.drop_column("scan_cursors", "walk_hash")
    op.drop_column("scan_cursors", "walk_lt")
