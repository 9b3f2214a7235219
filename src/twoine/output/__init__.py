"""Output formatting: rich renderers for humans, JSON for machines."""
