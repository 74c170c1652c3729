"""Commands of the pipeliner CLI."""
