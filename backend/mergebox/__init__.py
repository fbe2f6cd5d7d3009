"""Mergebox - merge and remux completed qBittorrent downloads with ffmpeg."""

__version__ = "0.1.0"
