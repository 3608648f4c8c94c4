"""Persistence for categories, products and their mappings."""
