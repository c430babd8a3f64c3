"""FastAPI server for the Auto-Analyze API."""
