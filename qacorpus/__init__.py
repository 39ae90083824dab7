"""
Q&A Corpus Tool
===============
Loader, parser, validator and exporter for Markdown interview Q&A collections.

Architecture:
    - Content Loader: Reads Markdown files from a corpus directory
    - Q&A Parser: Splits each document into numbered question entries
    - Validator: Reports duplicate numbers, empty explanations, open fences
    - Exporter: Writes JSON, HTML and Markdown artifacts plus a corpus index

Version: 1.0.0
"""

__version__ = "1.0.0"
