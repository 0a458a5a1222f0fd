"""Concrete collaborators: PostgreSQL record store and Telegram ports."""
