"""
tracking — Last-known tourist locations.
"""
