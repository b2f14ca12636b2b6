from .engine import TeraFileSync

__all__ = ["TeraFileSync"]
