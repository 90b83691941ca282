"""
Query generation for the graph store and the relational source.
"""

from .cypher_builder import CypherBuilder, CypherStatement, quote_identifier
from .sql_builder import SqlStatement

__all__ = ["CypherBuilder", "CypherStatement", "quote_identifier", "SqlStatement"]
