"""Initial schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

Contacts, properties, leads, appointments, quotes, the outbox and the CRM
pipeline projection.
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
    ]


def upgrade() -> None:
    """Create all tables."""

    # =========================================================================
    # Table: contacts
    # =========================================================================
    op.create_table(
        'contacts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('first_name', sa.String(120), nullable=False),
        sa.Column('last_name', sa.String(120), nullable=False, server_default=''),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(40), nullable=True),
        sa.Column('phone_e164', sa.String(20), nullable=True),
        sa.Column('source', sa.String(40), nullable=False, server_default='web'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('phone_e164'),
    )

    # =========================================================================
    # Table: properties
    # =========================================================================
    op.create_table(
        'properties',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('contact_id', sa.String(36), nullable=False),
        sa.Column('address_line1', sa.String(255), nullable=False),
        sa.Column('address_line2', sa.String(255), nullable=True),
        sa.Column('city', sa.String(120), nullable=False),
        sa.Column('state', sa.String(2), nullable=False),
        sa.Column('postal_code', sa.String(16), nullable=False),
        sa.Column('lat', sa.Numeric(9, 6), nullable=True),
        sa.Column('lng', sa.Numeric(9, 6), nullable=True),
        sa.Column('gated', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('address_line1', 'postal_code', 'state', name='uq_properties_address'),
    )
    op.create_index('ix_properties_contact_id', 'properties', ['contact_id'])

    # =========================================================================
    # Table: quotes (job FK added once appointments exists)
    # =========================================================================
    op.create_table(
        'quotes',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('contact_id', sa.String(36), nullable=False),
        sa.Column('property_id', sa.String(36), nullable=False),
        sa.Column('status', sa.String(20), nullable=True, server_default='pending'),
        sa.Column('services', sa.JSON(), nullable=False),
        sa.Column('add_ons', sa.JSON(), nullable=True),
        sa.Column('surface_area', sa.Numeric(10, 2), nullable=True),
        sa.Column('zone_id', sa.String(40), nullable=False),
        sa.Column('travel_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('discounts', sa.Numeric(10, 2), nullable=False),
        sa.Column('add_ons_total', sa.Numeric(10, 2), nullable=False),
        sa.Column('services_total', sa.Numeric(10, 2), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('deposit_due', sa.Numeric(10, 2), nullable=False),
        sa.Column('deposit_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('balance_due', sa.Numeric(10, 2), nullable=False),
        sa.Column('line_items', sa.JSON(), nullable=False),
        sa.Column('share_token', sa.String(64), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_notes', sa.Text(), nullable=True),
        sa.Column('job_appointment_id', sa.String(36), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.UniqueConstraint('share_token'),
    )
    op.create_index('ix_quotes_contact_id', 'quotes', ['contact_id'])
    op.create_index('ix_quotes_property_id', 'quotes', ['property_id'])
    op.create_index('ix_quotes_status', 'quotes', ['status'])

    # =========================================================================
    # Table: leads
    # =========================================================================
    op.create_table(
        'leads',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('contact_id', sa.String(36), nullable=False),
        sa.Column('property_id', sa.String(36), nullable=False),
        sa.Column('services_requested', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=True, server_default='new'),
        sa.Column('source', sa.String(40), nullable=True, server_default='web'),
        sa.Column('utm_source', sa.String(120), nullable=True),
        sa.Column('utm_medium', sa.String(120), nullable=True),
        sa.Column('utm_campaign', sa.String(120), nullable=True),
        sa.Column('utm_term', sa.String(120), nullable=True),
        sa.Column('utm_content', sa.String(120), nullable=True),
        sa.Column('gclid', sa.String(255), nullable=True),
        sa.Column('fbclid', sa.String(255), nullable=True),
        sa.Column('referrer', sa.String(500), nullable=True),
        sa.Column('form_payload', sa.JSON(), nullable=True),
        sa.Column('quote_id', sa.String(36), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.ForeignKeyConstraint(['quote_id'], ['quotes.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('quote_id'),
    )
    op.create_index('ix_leads_contact_id', 'leads', ['contact_id'])
    op.create_index('ix_leads_property_id', 'leads', ['property_id'])
    op.create_index('ix_leads_status', 'leads', ['status'])
    op.create_index('ix_leads_contact_property', 'leads', ['contact_id', 'property_id'])

    # =========================================================================
    # Table: appointments
    # =========================================================================
    op.create_table(
        'appointments',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('contact_id', sa.String(36), nullable=False),
        sa.Column('property_id', sa.String(36), nullable=False),
        sa.Column('lead_id', sa.String(36), nullable=True),
        sa.Column('type', sa.String(20), nullable=True, server_default='estimate'),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('travel_buffer_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('status', sa.String(20), nullable=True, server_default='requested'),
        sa.Column('reschedule_token', sa.String(64), nullable=False),
        sa.Column('calendar_event_id', sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('reschedule_token'),
    )
    op.create_index('ix_appointments_contact_id', 'appointments', ['contact_id'])
    op.create_index('ix_appointments_property_id', 'appointments', ['property_id'])
    op.create_index('ix_appointments_lead_id', 'appointments', ['lead_id'])
    op.create_index('ix_appointments_start_at', 'appointments', ['start_at'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])
    op.create_index('ix_appointments_status_start', 'appointments', ['status', 'start_at'])

    with op.batch_alter_table('quotes') as batch_op:
        batch_op.create_foreign_key(
            'fk_quotes_job_appointment', 'appointments', ['job_appointment_id'], ['id'], ondelete='SET NULL'
        )

    # =========================================================================
    # Table: appointment_notes
    # =========================================================================
    op.create_table(
        'appointment_notes',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('appointment_id', sa.String(36), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_appointment_notes_appointment_id', 'appointment_notes', ['appointment_id'])

    # =========================================================================
    # Table: outbox_events
    # =========================================================================
    op.create_table(
        'outbox_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('type', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claimed_by', sa.String(64), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('outcome', sa.String(20), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_outbox_events_type', 'outbox_events', ['type'])
    op.create_index('ix_outbox_pending', 'outbox_events', ['processed_at', 'created_at'])

    # =========================================================================
    # Table: crm_pipeline
    # =========================================================================
    op.create_table(
        'crm_pipeline',
        sa.Column('contact_id', sa.String(36), nullable=False),
        sa.Column('stage', sa.String(20), nullable=False, server_default='new'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('contact_id'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='CASCADE'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('crm_pipeline')
    op.drop_table('outbox_events')
    op.drop_table('appointment_notes')
    with op.batch_alter_table('quotes') as batch_op:
        batch_op.drop_constraint('fk_quotes_job_appointment', type_='foreignkey')
    op.drop_table('appointments')
    op.drop_table('leads')
    op.drop_table('quotes')
    op.drop_table('properties')
    op.drop_table('contacts')
