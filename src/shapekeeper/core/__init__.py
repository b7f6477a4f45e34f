"""Core domain: models, ports and the fingerprinting/retention algorithms."""
