"""Collectors for the charity register: API client, payload parsing, bulk extracts, crawler."""
