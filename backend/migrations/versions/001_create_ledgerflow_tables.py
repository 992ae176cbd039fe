"""Create categorization and reconciliation tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIM = 1536


def _timestamps():
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    ]


def upgrade():
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')
    op.execute('CREATE EXTENSION IF NOT EXISTS "vector"')

    # Reference data
    op.create_table(
        'category',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('slug', sa.Text(), nullable=False),
        sa.Column('is_system', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('keywords', postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug', name='uq_category_slug'),
    )

    op.create_table(
        'subcategory',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('slug', sa.Text(), nullable=False),
        sa.Column('is_system', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('keywords', postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['category.id'], ondelete='CASCADE'),
    )
    op.create_index('uq_subcategory_category_slug', 'subcategory', ['category_id', 'slug'], unique=True)

    # Transactions
    op.create_table(
        'bank_transaction',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('original_description', sa.Text(), nullable=True),
        sa.Column('normalized_description', sa.Text(), server_default='', nullable=False),
        sa.Column('counterparty_name', sa.Text(), nullable=True),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('transaction_type', sa.Text(), server_default='debit', nullable=False),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('subcategory_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('ai_category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('ai_subcategory_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('confidence', sa.Numeric(5, 4), nullable=True),
        sa.Column('ai_explanation', sa.Text(), nullable=True),
        sa.Column('categorization_method', sa.Text(), nullable=True),
        sa.Column('categorization_status', sa.Text(), server_default='pending', nullable=False),
        sa.Column('categorization_error', sa.Text(), nullable=True),
        sa.Column('categorization_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_reviewed', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('category_source', sa.Text(), nullable=True),
        sa.Column('user_updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('embedding', Vector(EMBEDDING_DIM), nullable=True),
        sa.Column('embedding_generated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['category.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['subcategory_id'], ['subcategory.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['ai_category_id'], ['category.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['ai_subcategory_id'], ['subcategory.id'], ondelete='SET NULL'),
        sa.CheckConstraint(
            'confidence IS NULL OR (confidence >= 0 AND confidence <= 1)',
            name='ck_bank_transaction_confidence',
        ),
        sa.CheckConstraint(
            "categorization_status IN ('pending', 'processing', 'categorized', 'needs_review', 'failed')",
            name='ck_bank_transaction_status',
        ),
        sa.CheckConstraint(
            "category_source IS NULL OR category_source IN ('auto', 'user')",
            name='ck_bank_transaction_category_source',
        ),
    )
    op.create_index('ix_bank_transaction_user_status', 'bank_transaction', ['user_id', 'categorization_status'])
    op.create_index('ix_bank_transaction_user_normalized', 'bank_transaction', ['user_id', 'normalized_description'])
    op.create_index('ix_bank_transaction_user_date', 'bank_transaction', ['user_id', 'transaction_date'])

    # Learning stores
    op.create_table(
        'user_rule',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('pattern', sa.Text(), nullable=False),
        sa.Column('pattern_type', sa.Text(), server_default='keyword', nullable=False),
        sa.Column('match_field', sa.Text(), server_default='description', nullable=False),
        sa.Column('amount_min', sa.Numeric(14, 2), nullable=True),
        sa.Column('amount_max', sa.Numeric(14, 2), nullable=True),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subcategory_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('priority', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('match_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_matched_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('source', sa.Text(), server_default='manual', nullable=False),
        sa.Column('source_transaction_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('is_invalid', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('invalid_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['category.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subcategory_id'], ['subcategory.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['source_transaction_id'], ['bank_transaction.id'], ondelete='SET NULL'),
        sa.CheckConstraint(
            "pattern_type IN ('keyword', 'regex', 'amount_range')",
            name='ck_user_rule_pattern_type',
        ),
        sa.CheckConstraint(
            "match_field IN ('description', 'amount', 'combined')",
            name='ck_user_rule_match_field',
        ),
    )
    op.create_index('uq_user_rule_user_pattern', 'user_rule', ['user_id', 'pattern'], unique=True)
    op.create_index('ix_user_rule_user_active', 'user_rule', ['user_id', 'is_active'])

    op.create_table(
        'global_pattern',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('pattern', sa.Text(), nullable=False),
        sa.Column('pattern_type', sa.Text(), server_default='keyword', nullable=False),
        sa.Column('match_field', sa.Text(), server_default='description', nullable=False),
        sa.Column('amount_min', sa.Numeric(14, 2), nullable=True),
        sa.Column('amount_max', sa.Numeric(14, 2), nullable=True),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subcategory_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('occurrence_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('user_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('agreement_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_verified', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('verified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('match_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_matched_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['category.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subcategory_id'], ['subcategory.id'], ondelete='SET NULL'),
        sa.CheckConstraint('agreement_count <= user_count', name='ck_global_pattern_agreement'),
    )
    op.create_index('uq_global_pattern_pattern_category', 'global_pattern', ['pattern', 'category_id'], unique=True)
    op.create_index('ix_global_pattern_verified', 'global_pattern', ['is_verified'])

    op.create_table(
        'global_pattern_contributor',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('global_pattern_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('agreed', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['global_pattern_id'], ['global_pattern.id'], ondelete='CASCADE'),
    )
    op.create_index(
        'uq_global_pattern_contributor',
        'global_pattern_contributor',
        ['global_pattern_id', 'user_id'],
        unique=True,
    )

    op.create_table(
        'labeled_example',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('normalized_description', sa.Text(), nullable=False),
        sa.Column('embedding', Vector(EMBEDDING_DIM), nullable=True),
        sa.Column('embedding_model', sa.Text(), nullable=True),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subcategory_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('source', sa.Text(), server_default='user_feedback', nullable=False),
        sa.Column('transaction_id', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['category.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subcategory_id'], ['subcategory.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['transaction_id'], ['bank_transaction.id'], ondelete='SET NULL'),
    )
    op.create_index(
        'uq_labeled_example_user_description',
        'labeled_example',
        ['user_id', 'normalized_description'],
        unique=True,
    )

    # HNSW index for k-NN cosine search over labeled examples
    op.execute("""
        CREATE INDEX idx_labeled_example_embedding_hnsw
        ON labeled_example
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 200)
    """)

    # Invoices
    op.create_table(
        'invoice',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('vendor_name', sa.Text(), nullable=True),
        sa.Column('invoice_number', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('invoice_date', sa.Date(), nullable=True),
        sa.Column('status', sa.Text(), server_default='pending', nullable=False),
        sa.Column('matched_transaction_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('match_confidence', sa.Numeric(5, 4), nullable=True),
        sa.Column('match_breakdown', postgresql.JSONB(), nullable=True),
        sa.Column('matched_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('matched_by', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['matched_transaction_id'], ['bank_transaction.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('matched_transaction_id', name='uq_invoice_matched_transaction'),
        sa.CheckConstraint(
            'match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)',
            name='ck_invoice_match_confidence',
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'matched', 'unmatched')",
            name='ck_invoice_status',
        ),
    )
    op.create_index('ix_invoice_user_status', 'invoice', ['user_id', 'status'])


def downgrade():
    op.drop_index('ix_invoice_user_status', table_name='invoice')
    op.drop_table('invoice')

    op.execute('DROP INDEX IF EXISTS idx_labeled_example_embedding_hnsw')
    op.drop_index('uq_labeled_example_user_description', table_name='labeled_example')
    op.drop_table('labeled_example')

    op.drop_index('uq_global_pattern_contributor', table_name='global_pattern_contributor')
    op.drop_table('global_pattern_contributor')

    op.drop_index('ix_global_pattern_verified', table_name='global_pattern')
    op.drop_index('uq_global_pattern_pattern_category', table_name='global_pattern')
    op.drop_table('global_pattern')

    op.drop_index('ix_user_rule_user_active', table_name='user_rule')
    op.drop_index('uq_user_rule_user_pattern', table_name='user_rule')
    op.drop_table('user_rule')

    op.drop_index('ix_bank_transaction_user_date', table_name='bank_transaction')
    op.drop_index('ix_bank_transaction_user_normalized', table_name='bank_transaction')
    op.drop_index('ix_bank_transaction_user_status', table_name='bank_transaction')
    op.drop_table('bank_transaction')

    op.drop_index('uq_subcategory_category_slug', table_name='subcategory')
    op.drop_table('subcategory')
    op.drop_table('category')

    # The vector extension is left installed
