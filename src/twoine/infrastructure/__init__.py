"""Infrastructure layer: persistence, OS adapters, engine drivers, templates."""
