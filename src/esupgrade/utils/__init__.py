"""
esupgrade Utilities Package
===========================
Serialization helpers shared across the migration modules.
"""
