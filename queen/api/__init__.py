"""HTTP surface: the FastAPI app and the GitHub webhook endpoint."""
