"""Document artifacts produced by modes."""

from .markdown import MarkdownDocument

__all__ = ["MarkdownDocument"]
