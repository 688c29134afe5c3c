from .statement_table import parse_statement_text

__all__ = ["parse_statement_text"]
