"""Initial schema: users, subscriptions, Instagram accounts, replies

Revision ID: dmreply_001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'dmreply_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('membership_type', sa.Enum('FREE', 'TRIAL', 'PAID', name='membershiptype'), nullable=False, server_default='FREE'),
        sa.Column('trial_start_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_membership_type'), 'users', ['membership_type'], unique=False)

    op.create_table('user_subscriptions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(), nullable=True),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_price_id', sa.String(), nullable=True),
        sa.Column('status', sa.Enum('ACTIVE', 'CANCELING', 'CANCELED', 'PAST_DUE', 'INCOMPLETE', 'TRIALING', 'UNPAID', name='subscriptionstatus'), nullable=False),
        sa.Column('stripe_current_period_end', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_subscriptions_id'), 'user_subscriptions', ['id'], unique=False)
    op.create_index(op.f('ix_user_subscriptions_user_id'), 'user_subscriptions', ['user_id'], unique=True)
    op.create_index(op.f('ix_user_subscriptions_stripe_subscription_id'), 'user_subscriptions', ['stripe_subscription_id'], unique=True)
    op.create_index(op.f('ix_user_subscriptions_status'), 'user_subscriptions', ['status'], unique=False)

    op.create_table('ig_accounts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('instagram_id', sa.String(), nullable=True),
        sa.Column('username', sa.String(), nullable=True),
        sa.Column('access_token_encrypted', sa.Text(), nullable=True),
        sa.Column('profile_picture_url', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_ig_accounts_id'), 'ig_accounts', ['id'], unique=False)
    op.create_index(op.f('ix_ig_accounts_user_id'), 'ig_accounts', ['user_id'], unique=False)
    op.create_index(op.f('ix_ig_accounts_instagram_id'), 'ig_accounts', ['instagram_id'], unique=False)
    op.create_index(op.f('ix_ig_accounts_token_expires_at'), 'ig_accounts', ['token_expires_at'], unique=False)

    op.create_table('replies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ig_account_id', sa.String(), nullable=False),
        sa.Column('keyword', sa.String(), nullable=False),
        sa.Column('reply', sa.Text(), nullable=False),
        sa.Column('post_id', sa.String(), nullable=True),
        sa.Column('reply_type', sa.Enum('POST', 'STORY', 'LIVE', name='replytype'), nullable=False),
        sa.Column('match_type', sa.Enum('EXACT', 'PARTIAL', name='matchtype'), nullable=False),
        sa.Column('comment_reply_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['ig_account_id'], ['ig_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_replies_ig_account_id'), 'replies', ['ig_account_id'], unique=False)
    op.create_index(op.f('ix_replies_post_id'), 'replies', ['post_id'], unique=False)
    op.create_index(op.f('ix_replies_created_at'), 'replies', ['created_at'], unique=False)

    op.create_table('buttons',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('reply_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['reply_id'], ['replies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_buttons_reply_id'), 'buttons', ['reply_id'], unique=False)

    op.create_table('execution_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_execution_logs_created_at'), 'execution_logs', ['created_at'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_execution_logs_created_at'), table_name='execution_logs')
    op.drop_table('execution_logs')

    op.drop_index(op.f('ix_buttons_reply_id'), table_name='buttons')
    op.drop_table('buttons')

    op.drop_index(op.f('ix_replies_created_at'), table_name='replies')
    op.drop_index(op.f('ix_replies_post_id'), table_name='replies')
    op.drop_index(op.f('ix_replies_ig_account_id'), table_name='replies')
    op.drop_table('replies')

    op.drop_index(op.f('ix_ig_accounts_token_expires_at'), table_name='ig_accounts')
    op.drop_index(op.f('ix_ig_accounts_instagram_id'), table_name='ig_accounts')
    op.drop_index(op.f('ix_ig_accounts_user_id'), table_name='ig_accounts')
    op.drop_index(op.f('ix_ig_accounts_id'), table_name='ig_accounts')
    op.drop_table('ig_accounts')

    op.drop_index(op.f('ix_user_subscriptions_status'), table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_stripe_subscription_id'), table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_user_id'), table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_id'), table_name='user_subscriptions')
    op.drop_table('user_subscriptions')

    op.drop_index(op.f('ix_users_membership_type'), table_name='users')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_index(op.f('ix_users_id'), table_name='users')
    op.drop_table('users')
