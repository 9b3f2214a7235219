"""Orchestrator layer: resource-lifecycle operations returning ServiceResult.

Orchestrators may import from domain, config and infrastructure layers.
They must never import from commands or output.
"""
