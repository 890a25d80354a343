"""WebSocket endpoint for termbridge.

Accepts connections over HTTP/WebSocket and runs one terminal session
per connection.
"""
