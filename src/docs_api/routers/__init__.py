"""HTTP routers of the Document API."""
