"""
Storage Package.

Lifecycle metadata persistence: policies, profiles, templates,
partition metadata, queue, audit log.

Modules:
- database: Engine, session factory, schema bootstrap
- models/: ORM models
- repositories/: Data access layer
"""
