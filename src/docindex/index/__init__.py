"""Page/section persistence, synchronisation and retrieval."""
