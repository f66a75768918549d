"""Background job queue and worker."""
