"""fee structures

Revision ID: 9d3f5a2b7c81
Revises: 7b1e4c9d2a60
Create Date: 2026-10-20 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "9d3f5a2b7c81"
down_revision = "7b1e4c9d2a60"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'fee_structures',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id'), nullable=False),
        sa.Column('class_name', sa.String(length=50), nullable=False),
        sa.Column('fee_type', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('priority_order', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(length=150), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('academic_year_id', 'class_name', 'fee_type', name='uq_fee_structure_class_type'),
        sa.CheckConstraint('amount >= 0', name='ck_fee_structure_amount_non_negative'),
    )


def downgrade():
    op.drop_table('fee_structures')
