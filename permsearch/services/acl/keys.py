"""
ACL cache keys

Every key embeds the tenant; components are percent-encoded so an ID
containing ':' cannot collide with another key.
"""

from urllib.parse import quote


def _part(value: str) -> str:
    return quote(str(value), safe="")


def user_resources_key(tenant_id: str, user_id: str) -> str:
    return f"acl:{_part(tenant_id)}:user:{_part(user_id)}:resources"


def resource_users_key(tenant_id: str, resource_type: str, resource_id: str) -> str:
    return f"acl:{_part(tenant_id)}:resource:{_part(resource_type)}:{_part(resource_id)}:users"


def group_members_key(tenant_id: str, provider: str, group_id: str) -> str:
    return f"acl:{_part(tenant_id)}:group:{_part(provider)}:{_part(group_id)}:members"
