"""
Loop streamer: keeps a looping video playlist streaming to Twitch through ffmpeg.
"""

__version__ = "1.0.0"
