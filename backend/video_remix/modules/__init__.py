"""Application modules.

- transform: Upload-to-artifact video transformation with ffmpeg
"""
