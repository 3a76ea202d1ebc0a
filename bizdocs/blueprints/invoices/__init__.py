from .routes import invoices_bp  # noqa: F401
