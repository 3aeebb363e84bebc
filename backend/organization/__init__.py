# organization/__init__.py
"""
Organization app - the tenant hierarchy engine.

This app provides:
- Tenant: Organizational unit forming a forest through parent links
- Application: Registry of grantable permission keys
- hierarchy: Descendants, roots, tree building and flattening
- scope: The set of tenants an actor may see
- inheritance: Effective permissions down the parent chain
- commands: Transactional mutations of the tree
"""
