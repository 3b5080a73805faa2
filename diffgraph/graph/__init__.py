"""Graph registry that every expression node records itself into."""

from .registry import GraphRegistry

__all__ = ['GraphRegistry']
