from .repository import DatabaseRepository, ResultStore
from . import models

__all__ = ["DatabaseRepository", "ResultStore", "models"]
