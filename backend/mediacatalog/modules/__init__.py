"""Application modules.

This package contains the feature modules of the media catalog backend:
- transcoding: Durable transcode queue, quality ladder encoding, HLS packaging
"""
