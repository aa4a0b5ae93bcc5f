"""
Domain services for efhub.

Each operation takes an open Session plus an explicit Actor and leaves
committing to the caller (get_session(), run_with_retry() or the web layer).
"""
