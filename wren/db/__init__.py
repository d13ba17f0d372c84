from .store import Database, DuplicateEmailError

__all__ = ["Database", "DuplicateEmailError"]
