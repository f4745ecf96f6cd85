"""
Shared dispatch domain: delivery and courier entities, domain events and
their persistence ports. Import submodules directly.
"""
