"""Sonata - local audio library with playlists and a playback engine."""

__version__ = "2.0.0"
