"""
aclgate - access gateway for a replicated document store.

Authorizes writes to a hierarchical path namespace with owner-signed ACLs,
issues bearer tokens, and enforces write-once semantics for
content-addressed records.
"""

__version__ = "0.4.0"
