from .donations import donations_cli

__all__ = ["donations_cli"]
