"""Modular routers for the ProjectGate API."""
