"""Database family plugins: one dialect and driver binding per module."""
