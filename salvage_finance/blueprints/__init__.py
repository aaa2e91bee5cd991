"""JSON blueprints: /quotations and /invoices."""
