"""
Site-specific content strategies.

Each module may define ``ContentStrategy`` subclasses; the plugin loader
registers them as ``<module>.<ClassName>``.
"""
