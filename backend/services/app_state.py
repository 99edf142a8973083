"""
Application state of one tab.

State is an immutable AppState model. It changes only through dispatch() of
one of the action types below; reduce() computes the next state and
subscribers are told about every change.
"""

from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from schemas.auth import UserProfile
from schemas.complaints import ComplaintView
from schemas.documents import DocumentView
from schemas.toasts import Toast


class AppState(BaseModel):
    current_user: Optional[UserProfile] = None
    loading: bool = True  # auth initialisation still running
    auth_loading: bool = False  # a sign-in or sign-up is in flight
    complaints: List[ComplaintView] = Field(default_factory=list)
    documents: List[DocumentView] = Field(default_factory=list)
    toasts: List[Toast] = Field(default_factory=list)


class Action(BaseModel):
    pass


class SetUser(Action):
    user: Optional[UserProfile]


class SetLoading(Action):
    value: bool


class SetAuthLoading(Action):
    value: bool


class SetComplaints(Action):
    complaints: List[ComplaintView]


class AddComplaint(Action):
    complaint: ComplaintView


class UpdateComplaint(Action):
    id: str
    updates: Dict[str, Any]


class SetDocuments(Action):
    documents: List[DocumentView]


class UpsertDocument(Action):
    document: DocumentView


class Logout(Action):
    pass


class AddToast(Action):
    toast: Toast


class RemoveToast(Action):
    id: str


def reduce(state: AppState, action: Action) -> AppState:
    if isinstance(action, SetUser):
        return state.model_copy(update={"current_user": action.user, "loading": False})
    if isinstance(action, SetLoading):
        return state.model_copy(update={"loading": action.value})
    if isinstance(action, SetAuthLoading):
        return state.model_copy(update={"auth_loading": action.value})
    if isinstance(action, SetComplaints):
        return state.model_copy(update={"complaints": list(action.complaints)})
    if isinstance(action, AddComplaint):
        return state.model_copy(update={"complaints": state.complaints + [action.complaint]})
    if isinstance(action, UpdateComplaint):
        complaints = [
            c.model_copy(update=action.updates) if c.id == action.id else c
            for c in state.complaints
        ]
        return state.model_copy(update={"complaints": complaints})
    if isinstance(action, SetDocuments):
        return state.model_copy(update={"documents": list(action.documents)})
    if isinstance(action, UpsertDocument):
        others = [d for d in state.documents if d.id != action.document.id]
        return state.model_copy(update={"documents": others + [action.document]})
    if isinstance(action, Logout):
        return state.model_copy(
            update={"current_user": None, "complaints": [], "documents": [], "loading": False}
        )
    if isinstance(action, AddToast):
        return state.model_copy(update={"toasts": state.toasts + [action.toast]})
    if isinstance(action, RemoveToast):
        return state.model_copy(update={"toasts": [t for t in state.toasts if t.id != action.id]})
    return state


Subscriber = Callable[[AppState, Action], None]


class Store:
    def __init__(self, state: Optional[AppState] = None):
        self._state = state or AppState()
        self._subscribers: List[Subscriber] = []

    @property
    def state(self) -> AppState:
        return self._state

    def dispatch(self, action: Action) -> AppState:
        self._state = reduce(self._state, action)
        for subscriber in list(self._subscribers):
            subscriber(self._state, action)
        return self._state

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe
