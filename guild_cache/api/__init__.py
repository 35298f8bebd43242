"""HTTP surface of the guild cache.

Modules
-------
app  — create_app(service): FastAPI application with the cache endpoints
"""
