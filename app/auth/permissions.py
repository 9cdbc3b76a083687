"""
Central registry of allowed actions per role.
"""
ROLE_SCOPES = {
    "driver": {"advance_order", "view_route"},
    "admin":  {"*"},
}

def role_has_scope(role: str, action: str) -> bool:
    scopes = ROLE_SCOPES.get(role, set())
    return "*" in scopes or action in scopes
