"""Data models for the music download proxy."""
