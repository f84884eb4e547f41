"""
FastAPI routers exposing the import pipeline over HTTP.

Authentication and file storage live in the host application; these routers
only translate requests into pipeline calls and pipeline errors into HTTP
status codes.
"""
