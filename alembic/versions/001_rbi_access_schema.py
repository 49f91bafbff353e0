"""Add PSGC reference, household, resident and audit tables with row-level security

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

from rbi_access.services.rls import render_drop_statements, render_rls_statements

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # PSGC reference hierarchy
    op.create_table('psgc_regions',
        sa.Column('code', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.PrimaryKeyConstraint('code')
    )

    op.create_table('psgc_provinces',
        sa.Column('code', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('region_code', sa.String(length=10), nullable=False),
        sa.ForeignKeyConstraint(['region_code'], ['psgc_regions.code']),
        sa.PrimaryKeyConstraint('code')
    )
    op.create_index('idx_psgc_provinces_region', 'psgc_provinces', ['region_code'], unique=False)

    op.create_table('psgc_cities_municipalities',
        sa.Column('code', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('province_code', sa.String(length=10), nullable=True),
        sa.Column('region_code', sa.String(length=10), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('is_independent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['province_code'], ['psgc_provinces.code']),
        sa.ForeignKeyConstraint(['region_code'], ['psgc_regions.code']),
        sa.PrimaryKeyConstraint('code')
    )
    op.create_index('idx_psgc_cities_province', 'psgc_cities_municipalities', ['province_code'], unique=False)
    op.create_index('idx_psgc_cities_region', 'psgc_cities_municipalities', ['region_code'], unique=False)

    op.create_table('psgc_barangays',
        sa.Column('code', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('city_municipality_code', sa.String(length=10), nullable=False),
        sa.ForeignKeyConstraint(['city_municipality_code'], ['psgc_cities_municipalities.code']),
        sa.PrimaryKeyConstraint('code')
    )
    op.create_index('idx_psgc_barangays_city', 'psgc_barangays', ['city_municipality_code'], unique=False)

    # Attributed records
    op.create_table('households',
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('barangay_code', sa.String(length=10), nullable=False),
        sa.Column('city_municipality_code', sa.String(length=10), nullable=False),
        sa.Column('province_code', sa.String(length=10), nullable=True),
        sa.Column('region_code', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('house_number', sa.String(length=50), nullable=True),
        sa.Column('street_name', sa.String(length=200), nullable=True),
        sa.Column('subdivision', sa.String(length=200), nullable=True),
        sa.Column('household_head_id', sa.String(length=36), nullable=True),
        sa.Column('member_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('updated_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('code')
    )
    op.create_index('idx_households_barangay', 'households', ['barangay_code'], unique=False)
    op.create_index('idx_households_city', 'households', ['city_municipality_code'], unique=False)
    op.create_index('idx_households_province', 'households', ['province_code'], unique=False)
    op.create_index('idx_households_region', 'households', ['region_code'], unique=False)

    op.create_table('residents',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('household_code', sa.String(length=50), nullable=True),
        sa.Column('barangay_code', sa.String(length=10), nullable=False),
        sa.Column('city_municipality_code', sa.String(length=10), nullable=False),
        sa.Column('province_code', sa.String(length=10), nullable=True),
        sa.Column('region_code', sa.String(length=10), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('middle_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('birthdate', sa.Date(), nullable=True),
        sa.Column('sex', sa.String(length=10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('updated_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['household_code'], ['households.code']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_residents_household', 'residents', ['household_code'], unique=False)
    op.create_index('idx_residents_barangay', 'residents', ['barangay_code'], unique=False)
    op.create_index('idx_residents_city', 'residents', ['city_municipality_code'], unique=False)
    op.create_index('idx_residents_province', 'residents', ['province_code'], unique=False)
    op.create_index('idx_residents_region', 'residents', ['region_code'], unique=False)

    op.create_table('audit_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('table_name', sa.String(length=50), nullable=False),
        sa.Column('record_id', sa.String(length=50), nullable=False),
        sa.Column('action', sa.String(length=30), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_logs_table', 'audit_logs', ['table_name'], unique=False)
    op.create_index('idx_audit_logs_record', 'audit_logs', ['record_id'], unique=False)
    op.create_index('idx_audit_logs_user', 'audit_logs', ['user_id'], unique=False)
    op.create_index('idx_audit_logs_created', 'audit_logs', ['created_at'], unique=False)

    # Storage-native policies (PostgreSQL only)
    if op.get_bind().dialect.name == 'postgresql':
        for statement in render_rls_statements():
            op.execute(statement)


def downgrade() -> None:
    if op.get_bind().dialect.name == 'postgresql':
        for statement in render_drop_statements():
            op.execute(statement)

    op.drop_index('idx_audit_logs_created', table_name='audit_logs')
    op.drop_index('idx_audit_logs_user', table_name='audit_logs')
    op.drop_index('idx_audit_logs_record', table_name='audit_logs')
    op.drop_index('idx_audit_logs_table', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index('idx_residents_region', table_name='residents')
    op.drop_index('idx_residents_province', table_name='residents')
    op.drop_index('idx_residents_city', table_name='residents')
    op.drop_index('idx_residents_barangay', table_name='residents')
    op.drop_index('idx_residents_household', table_name='residents')
    op.drop_table('residents')

    op.drop_index('idx_households_region', table_name='households')
    op.drop_index('idx_households_province', table_name='households')
    op.drop_index('idx_households_city', table_name='households')
    op.drop_index('idx_households_barangay', table_name='households')
    op.drop_table('households')

    op.drop_index('idx_psgc_barangays_city', table_name='psgc_barangays')
    op.drop_table('psgc_barangays')
    op.drop_index('idx_psgc_cities_region', table_name='psgc_cities_municipalities')
    op.drop_index('idx_psgc_cities_province', table_name='psgc_cities_municipalities')
    op.drop_table('psgc_cities_municipalities')
    op.drop_index('idx_psgc_provinces_region', table_name='psgc_provinces')
    op.drop_table('psgc_provinces')
    op.drop_table('psgc_regions')
