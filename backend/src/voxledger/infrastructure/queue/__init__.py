"""Background job queue (ARQ)."""
