"""REST and WebSocket surface of the PaceWatch server."""
