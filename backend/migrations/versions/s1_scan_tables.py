"""create scan and scan_finding tables

Revision ID: s1_scan_tables
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = 's1_scan_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── scan ──
    op.create_table(
        'scan',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('project_id', sa.String(36), nullable=True),
        sa.Column('target_urls', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('rate_limit', sa.Integer(), nullable=False, server_default='150'),
        sa.Column('timeout', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('critical_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('high_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('medium_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('info_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_findings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_risk_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('max_risk_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('warnings', sa.Text(), nullable=True),
    )
    op.create_index('ix_scan_project_id', 'scan', ['project_id'])
    op.create_index('ix_scan_status', 'scan', ['status'])

    # ── scan_finding ──
    op.create_table(
        'scan_finding',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('scan_id', sa.String(36), sa.ForeignKey('scan.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False, server_default='info'),
        sa.Column('confidence', sa.String(20), nullable=True),
        sa.Column('solution', sa.Text(), nullable=True),
        sa.Column('reference', sa.Text(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('risk_level', sa.String(20), nullable=True),
        sa.Column('risk_score', sa.Float(), nullable=True),
        sa.Column('plugin_id', sa.String(100), nullable=False),
        sa.Column('cve_id', sa.String(50), nullable=True),
        sa.Column('cwe_ids', sa.JSON(), nullable=True),
        sa.Column('wasc_ids', sa.JSON(), nullable=True),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('method', sa.String(10), nullable=True),
        sa.Column('parameter', sa.String(255), nullable=True),
        sa.Column('attack', sa.Text(), nullable=True),
        sa.Column('evidence', sa.Text(), nullable=True),
        sa.Column('other_info', sa.Text(), nullable=True),
        sa.Column('request_headers', sa.JSON(), nullable=True),
        sa.Column('request_body', sa.Text(), nullable=True),
        sa.Column('response_headers', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_scan_finding_scan_id', 'scan_finding', ['scan_id'])


def downgrade():
    op.drop_index('ix_scan_finding_scan_id', table_name='scan_finding')
    op.drop_table('scan_finding')
    op.drop_index('ix_scan_status', table_name='scan')
    op.drop_index('ix_scan_project_id', table_name='scan')
    op.drop_table('scan')
