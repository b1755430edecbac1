"""
Routers per API invoice-processor.

Moduli:
- invoice: Router per elaborazione fatture (POST /api/invoice/process, GET /api/invoice/jobs/*)
"""
from . import invoice

__all__ = ["invoice"]
