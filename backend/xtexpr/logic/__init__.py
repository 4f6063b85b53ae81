"""
Logic engine for xtexpr.

Provides expression compiling, printing and evaluation for expression blocks.
"""

from .parser import ExpressionParser, compile_expression
from .printer import ExpressionPrinter, format_expression
from .evaluator import ExpressionEvaluator

__all__ = [
    "ExpressionParser",
    "ExpressionPrinter",
    "ExpressionEvaluator",
    "compile_expression",
    "format_expression",
]
