"""
Backend package for the Directus-backed blog site.

This package provides a FastAPI application that proxies the headless CMS,
caches its read-only queries, and serves stored assets through a single
public path so content survives storage-provider migrations.
"""
