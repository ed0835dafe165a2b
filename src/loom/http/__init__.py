"""Loom HTTP — FastAPI routers and SSE framing."""
