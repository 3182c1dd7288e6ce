"""ProjectGate - project-scoped authorization, portal tokens and audit trail."""

__version__ = "0.1.0"
