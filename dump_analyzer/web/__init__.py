"""HTTP surface."""

from .routes import bp as dump_analyzer_blueprint

__all__ = ["dump_analyzer_blueprint"]
