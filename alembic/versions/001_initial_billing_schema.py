"""Initial billing schema - owners, restaurants, subscriptions

Revision ID: 001
Revises:
Create Date: 2026-01-05

WHY: Creates the three tables the billing engine reads and writes. Owners
and restaurants are managed by account signup; subscriptions are written
only by webhook reconciliation and the trial sweeps.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create owners, restaurants and subscriptions.

    WHY: subscriptions carries:
    - Stripe identifiers (unique subscription ID, indexed customer ID)
    - Plan and status enums (closed sets)
    - Billing period and trial end (naive UTC)
    - Capacity with a check constraint (at least one restaurant)
    """
    op.create_table(
        'owners',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_owners_id', 'owners', ['id'])
    op.create_index('ix_owners_email', 'owners', ['email'], unique=True)

    op.create_table(
        'restaurants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['owner_id'], ['owners.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_restaurants_id', 'restaurants', ['id'])
    op.create_index('ix_restaurants_owner_id', 'restaurants', ['owner_id'])

    subscription_plan_enum = sa.Enum(
        'free_starter', 'grow', 'expand',
        name='subscription_plan',
    )
    subscription_status_enum = sa.Enum(
        'trialing', 'active', 'past_due', 'canceled',
        name='subscription_status',
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=False),
        sa.Column('plan_type', subscription_plan_enum, nullable=False, server_default='grow'),
        sa.Column('status', subscription_status_enum, nullable=False, server_default='trialing'),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('trial_end', sa.DateTime(), nullable=True),
        sa.Column('max_active_restaurants', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint(
            'max_active_restaurants >= 1',
            name='ck_subscriptions_max_active_restaurants_positive',
        ),
        sa.ForeignKeyConstraint(['owner_id'], ['owners.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )

    # WHY: Webhook lookups by Stripe IDs, sweep lookups by status + period end
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_owner_id', 'subscriptions', ['owner_id'])
    op.create_index(
        'ix_subscriptions_stripe_subscription_id',
        'subscriptions',
        ['stripe_subscription_id'],
        unique=True,
    )
    op.create_index('ix_subscriptions_stripe_customer_id', 'subscriptions', ['stripe_customer_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_current_period_end', 'subscriptions', ['current_period_end'])


def downgrade() -> None:
    """Drop billing tables and enum types."""
    op.drop_table('subscriptions')
    op.drop_table('restaurants')
    op.drop_table('owners')
    sa.Enum(name='subscription_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='subscription_plan').drop(op.get_bind(), checkfirst=True)
