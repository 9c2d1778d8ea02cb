# LedgerPOS API Test Suite
#
# This package contains:
# - API tests (pytest + httpx, app served in-process over WSGI)
# - Stress/load tests (Locust)
#
# Run with: python -m pytest tests -m smoke
