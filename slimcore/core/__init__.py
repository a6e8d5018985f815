"""Core bootstrap primitives.

Configuration access, the service registry, provider and middleware
activation, request dispatch and error rendering. Nothing here knows about
concrete services; those live in :mod:`slimcore.services`.
"""
