from timeflow.common.logger import log

# Profile used when no identity provider is configured at all.
LOCAL_USER_ID = "local"


# Interface for whatever knows who is signed in. Subscribers get called with the new user id, or None on
# sign-out.
class IdentityProvider:

    def current_user_id(self):
        raise NotImplementedError

    def subscribe(self, callback):
        raise NotImplementedError


# Identity held in memory and switched explicitly. Used by the CLI (fixed or local user) and by tests
# to simulate sign-in/sign-out.
class StaticIdentity(IdentityProvider):

    def __init__(self, user_id=None):
        self._user_id = user_id
        self._subscribers = []

    def current_user_id(self):
        return self._user_id

    # Returns a function that removes the subscription again.
    def subscribe(self, callback):
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def sign_in(self, user_id):
        if not user_id:
            raise ValueError("sign_in needs a user id")
        if user_id == self._user_id:
            return
        self._user_id = user_id
        log.info(f"Signed in as '{user_id}'")
        self._notify()

    def sign_out(self):
        if self._user_id is None:
            return
        log.info(f"Signed out '{self._user_id}'")
        self._user_id = None
        self._notify()

    def _notify(self):
        for callback in list(self._subscribers):
            callback(self._user_id)
