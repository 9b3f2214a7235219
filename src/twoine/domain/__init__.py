"""Domain layer: entities, state machines, validation and naming rules.

This layer depends only on stdlib and pydantic.
It must never import from orchestrators, infrastructure, commands, or config.
"""
