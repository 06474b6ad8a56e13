"""FastAPI surface for the exploration engine."""
