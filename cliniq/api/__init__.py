# cliniq/api/__init__.py
# =======================
# API Layer — ClinIQ
#
# Endpoints:
#   GET /health
#   GET /api/v1/providers
#   WS  /api/v1/consultation

from cliniq.api.consultation import app  # noqa: F401

__all__ = ["app"]
