"""HTTP API for QR Payment Service."""
