"""
Story Studio - story configuration to narrated, illustrated video.
"""
__version__ = "1.0.0"
