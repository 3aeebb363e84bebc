# accounts/__init__.py
"""
Accounts app - users, roles and authorization.

This app provides:
- User: Custom user model bound to a tenant
- Role: Named action sets owned by an organization root
- ActorContext: Authorization context utilities (accounts.authz)
"""
