"""feat: workspaces, members, invitations, user workspace index

Revision ID: 5b2f0c1d9e7a
Revises:
Create Date: 2026-10-17 10:12:44.118203

"""
from typing import Sequence, Union

from alembic import op

from app.db.schema import CREATE_STATEMENTS, DROP_STATEMENTS


# revision identifiers, used by Alembic.
revision: str = '5b2f0c1d9e7a'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    for statement in CREATE_STATEMENTS:
        op.execute(statement)


def downgrade() -> None:
    for statement in DROP_STATEMENTS:
        op.execute(statement)
