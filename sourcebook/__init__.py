"""Sourcebook: ask questions about the documents you upload."""
