"""Initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

SENT_PREDICATE = sa.text("status IN ('sent', 'test_sent')")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "candidate_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("resume_text", sa.Text(), nullable=False),
        sa.Column("document", sa.LargeBinary(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(60), nullable=False),
        sa.Column("skills_json", sa.JSON(), nullable=False),
        sa.Column("years_of_experience", sa.Float(), nullable=True),
        sa.Column("keywords_json", sa.JSON(), nullable=False),
        sa.Column("experience_summary", sa.Text(), nullable=False),
        sa.Column("education", sa.Text(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "job_postings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("company", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("url", sa.String(800), nullable=False),
        sa.Column("source", sa.String(120), nullable=False),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("relevance_score", sa.Integer(), nullable=False),
        sa.Column("recommendation", sa.String(20), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_job_postings_source_url", "job_postings", ["source", "url"])

    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "profile_id",
            sa.Integer(),
            sa.ForeignKey("candidate_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("posting_id", sa.Integer(), sa.ForeignKey("job_postings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("cover_letter", sa.Text(), nullable=False),
        sa.Column("letter_strategy", sa.String(40), nullable=False),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("email_to", sa.String(255), nullable=False),
        sa.Column("delivery_id", sa.String(255), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_applications_profile_id", "applications", ["profile_id"])
    op.create_index("ix_applications_posting_id", "applications", ["posting_id"])
    op.create_index(
        "uq_applications_sent_pair",
        "applications",
        ["profile_id", "posting_id"],
        unique=True,
        sqlite_where=SENT_PREDICATE,
        postgresql_where=SENT_PREDICATE,
    )

    op.create_table(
        "pipeline_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("profile_id", sa.Integer(), nullable=False),
        sa.Column("posting_ids_json", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("matched", sa.Integer(), nullable=False),
        sa.Column("generated", sa.Integer(), nullable=False),
        sa.Column("sent", sa.Integer(), nullable=False),
        sa.Column("skipped", sa.Integer(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("errors_json", sa.JSON(), nullable=False),
        sa.Column("timeout_sec", sa.Float(), nullable=False),
        sa.Column("queue_job_id", sa.Integer(), nullable=True),
        sa.Column("summary_json", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_pipeline_runs_profile_id", "pipeline_runs", ["profile_id"])

    op.create_table(
        "queue_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("queue", sa.String(80), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("job_key", sa.String(255), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("run_at", sa.DateTime(), nullable=False),
        sa.Column("attempts_made", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("backoff_type", sa.String(20), nullable=False),
        sa.Column("backoff_delay_ms", sa.Integer(), nullable=False),
        sa.Column("remove_on_complete_json", sa.JSON(), nullable=False),
        sa.Column("remove_on_fail_json", sa.JSON(), nullable=False),
        sa.Column("lease_token", sa.String(64), nullable=True),
        sa.Column("lease_owner", sa.String(120), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=True),
        sa.Column("stalled_count", sa.Integer(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("result_json", sa.JSON(), nullable=True),
        sa.Column("failed_reason", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_queue_jobs_dispatch", "queue_jobs", ["queue", "state", "priority", "run_at"])
    op.create_index("ix_queue_jobs_key", "queue_jobs", ["queue", "job_key"])

    op.create_table(
        "queue_states",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(80), nullable=False),
        sa.Column("paused", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_queue_states_name"),
    )


def downgrade() -> None:
    op.drop_table("queue_states")
    op.drop_index("ix_queue_jobs_key", table_name="queue_jobs")
    op.drop_index("ix_queue_jobs_dispatch", table_name="queue_jobs")
    op.drop_table("queue_jobs")
    op.drop_index("ix_pipeline_runs_profile_id", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
    op.drop_index("uq_applications_sent_pair", table_name="applications")
    op.drop_index("ix_applications_posting_id", table_name="applications")
    op.drop_index("ix_applications_profile_id", table_name="applications")
    op.drop_table("applications")
    op.drop_index("ix_job_postings_source_url", table_name="job_postings")
    op.drop_table("job_postings")
    op.drop_table("candidate_profiles")
