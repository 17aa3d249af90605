"""Create tool_definitions and tool_executions

Revision ID: 001
Revises: 
Create Date: 2026-10-18

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Read and execute SQL file
    import os
    sql_file = os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
        "migrations",
        "001_tool_registry.sql"
    )

    if os.path.exists(sql_file):
        with open(sql_file, 'r') as f:
            op.execute(f.read())


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS tool_executions_tenant_isolation ON tool_executions")
    op.execute("DROP POLICY IF EXISTS tool_definitions_tenant_isolation ON tool_definitions")
    op.execute("DROP TABLE IF EXISTS tool_executions CASCADE")
    op.execute("DROP TABLE IF EXISTS tool_definitions CASCADE")
