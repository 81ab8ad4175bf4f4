"""
FastAPI routers for the import API.

``imports`` handles preview and submission for contacts and deals; ``jobs``
serves job status and the skipped-rows export.
"""
