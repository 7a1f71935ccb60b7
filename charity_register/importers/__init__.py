"""Importers for bulk register extract files."""
