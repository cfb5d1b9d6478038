"""Prompt templates for the classifier."""

from .loader import render

__all__ = ["render"]
