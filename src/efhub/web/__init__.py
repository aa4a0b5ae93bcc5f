"""JSON API for efhub."""
