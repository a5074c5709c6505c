"""
Repository package for data access layers.

Repositories wrap one `AsyncSession` and never commit; transaction boundaries
belong to the calling service.
"""
