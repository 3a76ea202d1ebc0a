from .routes import customers_bp  # noqa: F401
