"""Adapters connecting the core to storage backends and web frameworks."""
