"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Source normalization (files, pasted text, web pages)
- Recursive text chunking with overlap
- FAISS vector storage behind the index client
- Context assembly and prompt rendering
- Answer generation, streaming and summarization
"""
