"""Concrete providers and stores."""
