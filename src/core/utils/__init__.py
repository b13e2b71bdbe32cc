"""Core utility functions."""

from core.utils.json_serializers import dumps_record, json_serializer

__all__ = ["json_serializer", "dumps_record"]
