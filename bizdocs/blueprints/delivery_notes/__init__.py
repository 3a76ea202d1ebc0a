from .routes import delivery_notes_bp  # noqa: F401
