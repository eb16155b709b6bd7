"""Terminal output."""

from coderace.output.formatter import OutputFormatter, configure_formatter, get_formatter

__all__ = ["OutputFormatter", "configure_formatter", "get_formatter"]
