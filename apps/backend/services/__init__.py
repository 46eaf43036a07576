"""
Services
========
Persistence gateway, streaming export pipeline and entity services.
"""
