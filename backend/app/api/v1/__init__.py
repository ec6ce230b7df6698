from . import account, farm, invitations, billing

__all__ = [
    "account", "farm", "invitations", "billing"
]
