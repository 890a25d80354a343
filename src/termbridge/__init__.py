"""termbridge -- Share a terminal over WebSocket.

A child process runs on a pseudo-terminal (a POSIX pty, Windows ConPTY,
or a plain-pipe shim) and each WebSocket client drives it through a small
tag-byte protocol: keystrokes and resizes in, terminal output out.
"""

__version__ = "0.1.0"
