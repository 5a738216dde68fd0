"""Storage core: codecs, connection provider, cookbook store, hash tracking."""
