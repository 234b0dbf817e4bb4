"""Video files job table.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'video_files',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('movie_id', sa.Integer(), nullable=True),
        sa.Column('episode_id', sa.Integer(), nullable=True),
        sa.Column('original_filename', sa.String(255), nullable=False),
        sa.Column('file_path', sa.String(500), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('mime_type', sa.String(100), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('resolution', sa.String(20), nullable=True),
        sa.Column('transcoding_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('hls_path', sa.String(500), nullable=True),
        sa.Column('dash_path', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            '(movie_id IS NULL) <> (episode_id IS NULL)',
            name='ck_video_files_single_owner',
        ),
        sa.CheckConstraint(
            "transcoding_status IN ('pending', 'processing', 'completed', 'failed')",
            name='ck_video_files_status',
        ),
    )

    op.create_index('ix_video_files_movie_id', 'video_files', ['movie_id'])
    op.create_index('ix_video_files_episode_id', 'video_files', ['episode_id'])
    op.create_index(
        'ix_video_files_status_created',
        'video_files',
        ['transcoding_status', 'created_at', 'id'],
    )


def downgrade() -> None:
    op.drop_index('ix_video_files_status_created', table_name='video_files')
    op.drop_index('ix_video_files_episode_id', table_name='video_files')
    op.drop_index('ix_video_files_movie_id', table_name='video_files')
    op.drop_table('video_files')
