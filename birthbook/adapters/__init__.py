"""Adapters: source ingesters and storage backends."""
