from .accounts import load_known_accounts

__all__ = ["load_known_accounts"]
