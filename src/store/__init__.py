"""Typed CRUD access to the hosting cluster's objects."""

from store.base import ResourceStore
from store.objects import ObjectRef

__all__ = ['ResourceStore', 'ObjectRef']
