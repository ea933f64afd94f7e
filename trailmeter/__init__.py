"""Trailmeter - distance tracking from intermittent geolocation fixes."""

__version__ = "0.1.0"
