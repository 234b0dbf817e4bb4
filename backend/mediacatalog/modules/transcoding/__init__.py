"""Transcoding module for video encoding and HLS packaging.

Implements a durable work queue over the ``video_files`` table, an
ffmpeg-based quality ladder encoder with source-resolution-aware skipping,
per-rendition HLS segmentation and master manifest assembly.
"""
