"""Three-way reconciliation and publish engine for repository-backed documents."""

__version__ = "0.1.0"
