"""Built-in plugins shipped with twoine."""
