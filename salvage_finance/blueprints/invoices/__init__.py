"""
Invoices blueprint package.

This file just exposes the Blueprint object to be imported in salvage_finance.__init__.
The actual routes are in routes.py.
"""

from .routes import invoices_bp  # noqa: F401
