"""Permission strings carried on API keys."""

READ = "lynxa:read"  # analytics, billing
WRITE = "lynxa:write"  # chat completions
MANAGE_KEYS = "keys:manage"  # issue / rename / revoke keys

ALL_PERMISSIONS = frozenset({READ, WRITE, MANAGE_KEYS})

# Granted when a create request doesn't name any.
DEFAULT_PERMISSIONS = (READ, WRITE)

# Owner roles allowed on /admin.
ADMIN_ROLES = frozenset({"admin", "super_admin"})
