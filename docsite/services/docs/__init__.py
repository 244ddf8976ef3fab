"""Doc node persistence and generation.

Re-exported at package level so callers can ``from docsite.services.docs import ...``.
"""
from .codec import (
    DEF_FIELDS,
    MAX_ENTITY_SIZE,
    NULL_NODE,
    TOO_LARGE_DOC,
    DocNode,
    decode,
    encode,
    encode_mutations,
    entity_size,
    is_namespace,
    merge,
)
from .generate import DocExtractionError, DocExtractor, RemoteDocExtractor, doc_url, generate_doc_nodes
from .query import entry_key, get_namespace_key, query_doc_nodes, query_doc_nodes_by_symbol

__all__ = [
    # codec
    'DEF_FIELDS', 'MAX_ENTITY_SIZE', 'NULL_NODE', 'TOO_LARGE_DOC', 'DocNode',
    'decode', 'encode', 'encode_mutations', 'entity_size', 'is_namespace', 'merge',
    # generation
    'DocExtractionError', 'DocExtractor', 'RemoteDocExtractor', 'doc_url', 'generate_doc_nodes',
    # queries
    'entry_key', 'get_namespace_key', 'query_doc_nodes', 'query_doc_nodes_by_symbol',
]
