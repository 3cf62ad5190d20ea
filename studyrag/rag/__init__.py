"""
RAG (Retrieval Augmented Generation) core for studyrag.

Components:
    - chunker: Splits document text into overlapping chunks
    - noise_filter: Drops chunks without meaningful text
    - embedding_response: Decodes embedding payloads into flat vectors
    - embedder: Batched, bounded-concurrency embedding with timeout and retry
    - retry: RetryPolicy and the call_with_retry helper
    - chunk_store: ChromaDB chunk persistence and similarity search
    - ingest: The ingestion pipeline
    - prompt: Grounded prompt assembly
    - retriever: Query-time retrieval and answering
    - factory: Wires the components from configuration
"""
