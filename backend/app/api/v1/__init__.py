# API v1 Package
from app.api.v1 import finance, expenses, hr

__all__ = [
    'finance',
    'expenses',
    'hr',
]
