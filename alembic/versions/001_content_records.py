"""Create content_records table"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "content_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("source_url", sa.String(2048), nullable=False),
        sa.Column("source_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("body_text", sa.Text(), nullable=True),
        sa.Column("author_name", sa.String(512), nullable=True),
        sa.Column("author_handle", sa.String(255), nullable=True),
        sa.Column("published_at", sa.String(64), nullable=True),
        sa.Column("images", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("videos", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("platform_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("topics", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("embedding", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("embedding_model", sa.String(100), nullable=True),
        sa.Column("embedding_generated_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processing_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("captured_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("source_url", "user_id", name="uq_content_records_url_user"),
    )

    op.create_index("idx_content_records_user_status", "content_records", ["user_id", "status"])
    op.create_index("idx_content_records_created", "content_records", ["created_at", "id"])
    op.create_index("idx_content_records_status_created", "content_records", ["status", "created_at"])
    # Topic containment filter
    op.execute("CREATE INDEX idx_content_records_topics ON content_records USING GIN (topics)")


def downgrade():
    op.execute("DROP INDEX IF EXISTS idx_content_records_topics")
    op.drop_index("idx_content_records_status_created", "content_records")
    op.drop_index("idx_content_records_created", "content_records")
    op.drop_index("idx_content_records_user_status", "content_records")
    op.drop_table("content_records")
