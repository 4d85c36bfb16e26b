"""fee ledger tables

Revision ID: 7b1e4c9d2a60
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "7b1e4c9d2a60"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade():
    op.create_table(
        'academic_years',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('name'),
    )
    op.create_index('ix_academic_years_is_current', 'academic_years', ['is_current'])

    op.create_table(
        'students',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('admission_number', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('class_name', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('admission_number'),
    )

    op.create_table(
        'carry_forwards',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('from_academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id'), nullable=False),
        sa.Column('to_academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id'), nullable=False),
        sa.Column('original_amount', MONEY, nullable=False),
        sa.Column('carried_amount', MONEY, nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_by', sa.String(length=150), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_carry_forwards_student_id', 'carry_forwards', ['student_id'])
    op.create_index(
        'idx_cf_student_years', 'carry_forwards', ['student_id', 'from_academic_year_id', 'to_academic_year_id']
    )

    op.create_table(
        'fee_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id'), nullable=False),
        sa.Column('fee_type', sa.String(length=100), nullable=False),
        sa.Column('actual_fee', MONEY, nullable=False),
        sa.Column('discount_amount', MONEY, nullable=False),
        sa.Column('paid_amount', MONEY, nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('priority_order', sa.Integer(), nullable=False),
        sa.Column('payment_blocked', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('blocked_reason', sa.String(length=255), nullable=True),
        sa.Column('blocked_by', sa.String(length=150), nullable=True),
        sa.Column('blocked_at', sa.DateTime(), nullable=True),
        sa.Column('is_carry_forward', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column(
            'carry_forward_source_id',
            sa.Integer(),
            sa.ForeignKey('carry_forwards.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('is_waived', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('discount_notes', sa.Text(), nullable=True),
        sa.Column('discount_updated_by', sa.String(length=150), nullable=True),
        sa.Column('discount_updated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint('actual_fee >= 0', name='ck_fee_actual_non_negative'),
        sa.CheckConstraint('discount_amount >= 0 AND discount_amount <= actual_fee', name='ck_fee_discount_range'),
        sa.CheckConstraint('paid_amount >= 0', name='ck_fee_paid_non_negative'),
    )
    op.create_index('idx_fee_student_year', 'fee_records', ['student_id', 'academic_year_id'])
    op.create_index('idx_fee_fifo', 'fee_records', ['student_id', 'priority_order', 'due_date', 'created_at'])
    op.create_index('ix_fee_records_carry_forward_source_id', 'fee_records', ['carry_forward_source_id'])

    op.create_table(
        'payment_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('amount_paid', MONEY, nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('payment_time', sa.Time(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('late_fee', MONEY, nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=False),
        sa.Column('receiver', sa.String(length=150), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('student_id', 'receipt_number', name='uq_payment_student_receipt'),
        sa.CheckConstraint('amount_paid > 0', name='ck_payment_amount_positive'),
        sa.CheckConstraint('late_fee >= 0', name='ck_payment_late_fee_non_negative'),
    )
    op.create_index('ix_payment_records_student_id', 'payment_records', ['student_id'])

    op.create_table(
        'payment_allocations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payment_record_id', sa.Integer(), sa.ForeignKey('payment_records.id'), nullable=False),
        sa.Column('fee_record_id', sa.Integer(), sa.ForeignKey('fee_records.id'), nullable=False),
        sa.Column('allocated_amount', MONEY, nullable=False),
        sa.Column('allocation_order', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('payment_record_id', 'allocation_order', name='uq_allocation_order'),
        sa.CheckConstraint('allocated_amount > 0', name='ck_allocation_positive'),
    )
    op.create_index('ix_payment_allocations_payment_record_id', 'payment_allocations', ['payment_record_id'])
    op.create_index('ix_payment_allocations_fee_record_id', 'payment_allocations', ['fee_record_id'])

    op.create_table(
        'fee_audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('fee_record_id', sa.Integer(), sa.ForeignKey('fee_records.id'), nullable=True),
        sa.Column('academic_year_id', sa.Integer(), sa.ForeignKey('academic_years.id'), nullable=True),
        sa.Column('action_type', sa.String(length=32), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('amount_affected', MONEY, nullable=False),
        sa.Column('performed_by', sa.String(length=150), nullable=False),
        sa.Column('performed_at', sa.DateTime(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
    )
    op.create_index('ix_fee_audit_log_student_id', 'fee_audit_log', ['student_id'])
    op.create_index('ix_fee_audit_log_fee_record_id', 'fee_audit_log', ['fee_record_id'])
    op.create_index('ix_fee_audit_log_academic_year_id', 'fee_audit_log', ['academic_year_id'])
    op.create_index('ix_fee_audit_log_action_type', 'fee_audit_log', ['action_type'])
    op.create_index('ix_fee_audit_log_performed_at', 'fee_audit_log', ['performed_at'])


def downgrade():
    op.drop_table('fee_audit_log')
    op.drop_table('payment_allocations')
    op.drop_table('payment_records')
    op.drop_table('fee_records')
    op.drop_table('carry_forwards')
    op.drop_table('students')
    op.drop_table('academic_years')
