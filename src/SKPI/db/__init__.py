# src/SKPI/db/__init__.py
# Don't import session on package import; the engine needs a driver
from .base import Base  # safe to import
