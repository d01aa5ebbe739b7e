"""HTTP ingress and query server (FastAPI)."""
