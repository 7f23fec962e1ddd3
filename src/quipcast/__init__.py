"""
quipcast: live broadcast renderer and streaming egress for quipslop.

The package renders the spectator view of an AI-vs-AI quip battle into frames,
captures those frames into a WebM stream and relays it into ffmpeg for a live
RTMP push or a local preview.
"""

__version__ = "0.1.0"
