"""enable_tenant_rls

Enable and force row-level security on every tenant-scoped table.
The policy filters on the ``app.current_tenant`` setting that
TenantSessionManager sets per connection or per transaction.

Revision ID: 8b41e07c5d92
Revises: 3f2a9c1d7e10
Create Date: 2026-09-28 10:40:03.117904

"""

from typing import Sequence, Union

from alembic import op

from restaurant_checklist.storage.orm import TENANT_SCOPED_TABLES
from restaurant_checklist.storage.rls import (
    disable_rls_statements,
    enable_rls_statements,
)

# revision identifiers, used by Alembic.
revision: str = "8b41e07c5d92"
down_revision: Union[str, Sequence[str], None] = "3f2a9c1d7e10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Attach the tenant isolation policy."""
    for table in TENANT_SCOPED_TABLES:
        for statement in enable_rls_statements(table):
            op.execute(statement)


def downgrade() -> None:
    """Remove the tenant isolation policy."""
    for table in reversed(TENANT_SCOPED_TABLES):
        for statement in disable_rls_statements(table):
            op.execute(statement)
