"""Web framework adapters for capturing traffic and serving the collector."""
