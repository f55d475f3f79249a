"""Candle data: types, providers, chunked fetching and quality checks."""
