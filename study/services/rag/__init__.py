"""Retrieval-augmented generation over indexed study material."""

from .pipeline import RAGAnswer, RAGPipeline

__all__ = ['RAGAnswer', 'RAGPipeline']
