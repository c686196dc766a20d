"""Retrieval and model clients: similarity, embeddings, chat, truncation."""
