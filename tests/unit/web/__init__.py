"""Unit tests for ProjectGate web route modules.

Routes are exercised through FastAPI's TestClient with the database,
principal, engine and writer dependencies overridden.
"""
