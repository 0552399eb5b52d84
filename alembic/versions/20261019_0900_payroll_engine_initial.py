"""Initial payroll engine schema

Revision ID: 20261019_0900_payroll_engine_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration creates:
- departments, roles, employees: read-side copy of the HR directory
- salary_grades, role_salary_grade_mappings: grade bands, steps, role mapping
- tax_brackets: PAYE bands (one active set)
- allowances, bonuses, deductions: compensation items with usage tracking
  and an optimistic-lock version column
- payroll_records: one immutable row per employee and period
- audit_logs: append-only trail
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261019_0900_payroll_engine_initial'
down_revision = None
branch_labels = None
depends_on = None


# Enum types store member names
payroll_frequency = postgresql.ENUM(
    'MONTHLY', 'QUARTERLY', 'YEARLY', 'ONE_TIME',
    name='payrollfrequency', create_type=False,
)
payroll_scope = postgresql.ENUM(
    'COMPANY', 'DEPARTMENT', 'INDIVIDUAL',
    name='payrollscope', create_type=False,
)
calculation_type = postgresql.ENUM(
    'FIXED', 'PERCENTAGE', 'TAX_BRACKETS',
    name='calculationtype', create_type=False,
)
percentage_base = postgresql.ENUM(
    'BASE_SALARY', 'GROSS_SALARY',
    name='percentagebase', create_type=False,
)
item_status = postgresql.ENUM(
    'ACTIVE', 'INACTIVE', 'EXPIRED',
    name='itemstatus', create_type=False,
)
allowance_category = postgresql.ENUM(
    'PERFORMANCE', 'SPECIAL', 'HARDSHIP', 'TRANSPORT', 'HOUSING',
    'MEAL', 'MEDICAL', 'EDUCATION', 'OTHER',
    name='allowancecategory', create_type=False,
)
bonus_type = postgresql.ENUM(
    'PERSONAL', 'PERFORMANCE', 'THIRTEENTH_MONTH', 'SPECIAL',
    'ACHIEVEMENT', 'RETENTION', 'PROJECT', 'YEAR_END',
    name='bonustype', create_type=False,
)
deduction_type = postgresql.ENUM(
    'STATUTORY', 'VOLUNTARY',
    name='deductiontype', create_type=False,
)
deduction_category = postgresql.ENUM(
    'PAYE', 'PENSION', 'NHIS', 'LOAN_REPAYMENT', 'INSURANCE', 'ASSOCIATION_DUES',
    'SAVINGS', 'TRANSPORT', 'COOPERATIVE', 'TRAINING_FUND', 'WELFARE', 'PENALTY', 'GENERAL',
    name='deductioncategory', create_type=False,
)
audit_action = postgresql.ENUM(
    'CREATE', 'UPDATE', 'DEACTIVATE', 'EXPIRE', 'ITEM_USED',
    'PAYROLL_PROCESSED', 'PAYROLL_BATCH_PROCESSED',
    name='auditaction', create_type=False,
)

ENUMS = (
    payroll_frequency, payroll_scope, calculation_type, percentage_base, item_status,
    allowance_category, bonus_type, deduction_type, deduction_category, audit_action,
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _audit_columns():
    return [
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('updated_by_id', sa.Uuid(), nullable=True),
    ]


def _money(name, nullable=False, **kwargs):
    return sa.Column(name, sa.Numeric(15, 2), nullable=nullable, **kwargs)


def _item_table(name, *extra_columns):
    """Compensation item table: shared columns plus the variant's own."""
    op.create_table(
        name,
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('scope', payroll_scope, nullable=False),
        sa.Column('department_ids', sa.JSON(), nullable=False),
        sa.Column('employee_ids', sa.JSON(), nullable=False),
        sa.Column('calculation_type', calculation_type, nullable=False),
        sa.Column('percentage_base', percentage_base, nullable=False),
        _money('amount', nullable=True),
        sa.Column('taxable', sa.Boolean(), nullable=False),
        sa.Column('frequency', payroll_frequency, nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('status', item_status, nullable=False),
        sa.Column('is_used', sa.Boolean(), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('last_used_date', sa.Date(), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_used_frequency', payroll_frequency, nullable=True),
        sa.Column('last_used_scope', payroll_scope, nullable=True),
        sa.Column('last_used_by_id', sa.Uuid(), nullable=True),
        sa.Column('last_used_run_id', sa.Uuid(), nullable=True),
        sa.Column('last_used_in_payroll_id', sa.Uuid(), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        *extra_columns,
        *_audit_columns(),
        *_timestamps(),
        sa.CheckConstraint('amount IS NULL OR amount >= 0', name=f'ck_{name}_amount_non_negative'),
        sa.CheckConstraint(
            "calculation_type != 'PERCENTAGE' OR amount <= 100",
            name=f'ck_{name}_percentage_range',
        ),
        sa.CheckConstraint(
            'end_date IS NULL OR end_date >= start_date',
            name=f'ck_{name}_validity_window',
        ),
        sa.PrimaryKeyConstraint('id', name=f'pk_{name}'),
    )
    op.create_index(f'ix_{name}_scope', name, ['scope'])
    op.create_index(f'ix_{name}_status', name, ['status'])


def upgrade() -> None:
    """Create payroll engine tables."""
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # ===========================================
    # DIRECTORY
    # ===========================================
    op.create_table(
        'departments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('code', sa.String(20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_departments'),
        sa.UniqueConstraint('code', name='uq_departments_code'),
    )
    op.create_table(
        'roles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_roles'),
        sa.UniqueConstraint('name', name='uq_roles_name'),
    )
    op.create_table(
        'employees',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('staff_id', sa.String(50), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('department_id', sa.Uuid(), nullable=True),
        sa.Column('role_id', sa.Uuid(), nullable=True),
        _money('custom_base_salary', nullable=True),
        sa.Column('years_of_service', sa.Numeric(5, 2), nullable=True),
        sa.Column('salary_step', sa.String(20), nullable=True),
        sa.Column('use_step_calculation', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('onboarding_completed', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['department_id'], ['departments.id'],
            name='fk_employees_department_id_departments', ondelete='SET NULL',
        ),
        sa.ForeignKeyConstraint(
            ['role_id'], ['roles.id'],
            name='fk_employees_role_id_roles', ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_employees'),
        sa.UniqueConstraint('staff_id', name='uq_employees_staff_id'),
    )
    op.create_index('ix_employees_department_id', 'employees', ['department_id'])
    op.create_index('ix_employees_role_id', 'employees', ['role_id'])

    # ===========================================
    # SALARY GRADES
    # ===========================================
    op.create_table(
        'salary_grades',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('grade', sa.String(20), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _money('min_gross_salary'),
        _money('max_gross_salary'),
        _money('housing_allowance'),
        _money('transport_allowance'),
        _money('meal_allowance'),
        _money('other_allowance'),
        sa.Column('custom_allowances', sa.JSON(), nullable=False),
        sa.Column('steps', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_audit_columns(),
        *_timestamps(),
        sa.CheckConstraint('min_gross_salary < max_gross_salary', name='ck_salary_grades_salary_range'),
        sa.CheckConstraint(
            'housing_allowance >= 0 AND transport_allowance >= 0 '
            'AND meal_allowance >= 0 AND other_allowance >= 0',
            name='ck_salary_grades_allowances_non_negative',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_salary_grades'),
        sa.UniqueConstraint('grade', name='uq_salary_grades_grade'),
    )
    op.create_table(
        'role_salary_grade_mappings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('role_id', sa.Uuid(), nullable=False),
        sa.Column('salary_grade_id', sa.Uuid(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_audit_columns(),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['role_id'], ['roles.id'],
            name='fk_role_salary_grade_mappings_role_id_roles', ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['salary_grade_id'], ['salary_grades.id'],
            name='fk_role_salary_grade_mappings_salary_grade_id_salary_grades', ondelete='RESTRICT',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_role_salary_grade_mappings'),
    )
    op.create_index('ix_role_salary_grade_mappings_role_id', 'role_salary_grade_mappings', ['role_id'])
    op.create_index(
        'uq_role_salary_grade_mappings_active_role',
        'role_salary_grade_mappings',
        ['role_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    # ===========================================
    # TAX BRACKETS
    # ===========================================
    op.create_table(
        'tax_brackets',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        _money('min_amount'),
        _money('max_amount', nullable=True, comment='NULL for the open-ended top bracket'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, comment='Percent'),
        _money('additional_tax'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_audit_columns(),
        *_timestamps(),
        sa.CheckConstraint('tax_rate >= 0 AND tax_rate <= 100', name='ck_tax_brackets_rate_range'),
        sa.CheckConstraint('min_amount >= 0 AND additional_tax >= 0', name='ck_tax_brackets_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_tax_brackets'),
    )
    op.create_index(
        'uq_tax_brackets_active_order',
        'tax_brackets',
        ['order'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    # ===========================================
    # COMPENSATION ITEMS
    # ===========================================
    _item_table(
        'allowances',
        sa.Column('category', allowance_category, nullable=False),
    )
    _item_table(
        'bonuses',
        sa.Column('bonus_type', bonus_type, nullable=False),
    )
    _item_table(
        'deductions',
        sa.Column('deduction_type', deduction_type, nullable=False),
        sa.Column('category', deduction_category, nullable=False),
    )

    # ===========================================
    # PAYROLL RECORDS
    # ===========================================
    op.create_table(
        'payroll_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('employee_id', sa.Uuid(), nullable=False),
        sa.Column('department_id', sa.Uuid(), nullable=True),
        sa.Column('salary_grade_id', sa.Uuid(), nullable=True),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('frequency', payroll_frequency, nullable=False),
        sa.Column('scope', payroll_scope, nullable=False),
        _money('base_salary', comment='Base before step increment'),
        _money('effective_base_salary'),
        _money('step_increment'),
        sa.Column('salary_step', sa.String(20), nullable=True),
        sa.Column('grade_allowances', sa.JSON(), nullable=False),
        sa.Column('allowances', sa.JSON(), nullable=False),
        sa.Column('bonuses', sa.JSON(), nullable=False),
        sa.Column('deductions', sa.JSON(), nullable=False),
        sa.Column('paye_breakdown', sa.JSON(), nullable=False),
        _money('total_allowances'),
        _money('taxable_allowances'),
        _money('total_bonuses'),
        _money('taxable_bonuses'),
        _money('statutory_deductions'),
        _money('voluntary_deductions'),
        _money('pension_amount'),
        _money('nhis_amount'),
        _money('paye_amount'),
        _money('total_deductions'),
        _money('taxable_income'),
        _money('gross_pay'),
        _money('net_pay'),
        sa.Column('payroll_run_id', sa.Uuid(), nullable=False, comment='Groups the records committed by one batch'),
        sa.Column('processed_by_id', sa.Uuid(), nullable=True),
        sa.Column('processing_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_audit_columns(),
        *_timestamps(),
        sa.CheckConstraint('month BETWEEN 1 AND 12', name='ck_payroll_records_valid_month'),
        sa.ForeignKeyConstraint(
            ['employee_id'], ['employees.id'],
            name='fk_payroll_records_employee_id_employees', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['salary_grade_id'], ['salary_grades.id'],
            name='fk_payroll_records_salary_grade_id_salary_grades', ondelete='RESTRICT',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_payroll_records'),
        sa.UniqueConstraint(
            'employee_id', 'month', 'year', 'frequency', 'scope',
            name='uq_payroll_records_employee_period',
        ),
    )
    op.create_index('ix_payroll_records_employee_id', 'payroll_records', ['employee_id'])
    op.create_index('ix_payroll_records_department_id', 'payroll_records', ['department_id'])
    op.create_index('ix_payroll_records_salary_grade_id', 'payroll_records', ['salary_grade_id'])
    op.create_index('ix_payroll_records_payroll_run_id', 'payroll_records', ['payroll_run_id'])

    # ===========================================
    # AUDIT
    # ===========================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('action', audit_action, nullable=False),
        sa.Column('target_entity_type', sa.String(50), nullable=False),
        sa.Column('target_entity_id', sa.String(100), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_audit_logs'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_target_entity_type', 'audit_logs', ['target_entity_type'])
    op.create_index('ix_audit_logs_target_entity_id', 'audit_logs', ['target_entity_id'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    """Drop payroll engine tables."""
    for table in (
        'audit_logs', 'payroll_records', 'deductions', 'bonuses', 'allowances',
        'tax_brackets', 'role_salary_grade_mappings', 'salary_grades',
        'employees', 'roles', 'departments',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
