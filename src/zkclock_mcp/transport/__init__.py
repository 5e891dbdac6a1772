"""Transport layer: TCP session and chunked bulk transfer."""

from .tcp_connection import TCPConnection
