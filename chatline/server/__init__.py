"""
Server-side modules for chatline.

This package contains server-side functionality including:
- Connection acceptance and the worker pool
- Per-connection session handling (login, registration, chat)
- The directory of online users and message fan-out
"""
