from enum import Enum

from backoffice_auth.services.identity import Identity, derive_flags


class LoginFlow(str, Enum):
    GENERIC = "generic"
    BACK_OFFICE = "backoffice"
    USER = "user"

    @property
    def purpose(self) -> str:
        return _FLOW_PURPOSES[self]


_FLOW_PURPOSES = {
    LoginFlow.GENERIC: "LOGIN",
    LoginFlow.BACK_OFFICE: "BACKOFFICE_LOGIN",
    LoginFlow.USER: "USER_LOGIN",
}


def admits(flow: LoginFlow, identity: Identity) -> bool:
    """Whether ``identity`` may finish a login through ``flow``.

    Back office staff are identities with the back office account type or the
    admin role; the end-user flow takes everybody else.
    """
    if not identity.active:
        return False
    if flow is LoginFlow.GENERIC:
        return True
    is_staff = derive_flags(identity).is_staff
    if flow is LoginFlow.BACK_OFFICE:
        return is_staff
    return not is_staff
