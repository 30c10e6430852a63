"""
Incremental catalog ingestion core: serialization, fingerprints, inferred
schemas and source strategies.
"""
