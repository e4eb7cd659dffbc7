"""Storage protocols and their MongoDB implementations."""
