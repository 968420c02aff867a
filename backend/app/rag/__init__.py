"""Retrieval core: chunk model, structural code chunking, FAISS table store
and cached semantic search.
"""
