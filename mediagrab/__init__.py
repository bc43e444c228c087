"""
mediagrab - stream YouTube video (MP4) or audio (MP3) through yt-dlp
"""

VERSION = "1.0.0"
