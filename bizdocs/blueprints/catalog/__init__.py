from .routes import catalog_bp  # noqa: F401
