"""Inbound message pipeline: result values, ordering and orchestration."""

from .result import Err, Ok, Result

__all__ = ["Err", "Ok", "Result"]
