"""
contacts.py
-----------
Purpose:
    The authenticated user's contact list.
"""

from fastapi import APIRouter, Depends, status

from app.auth.verify import auth_dependency
from app.dependencies import Clients, get_clients
from app.models.api.user_response import ContactResponse, ContactsResponse, UserPartialResponse
from app.models.domain.user_domain import User
from app.services import user_service

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.get("", response_model=ContactsResponse)
async def list_contacts(user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)):
    contacts = await user_service.get_contacts_by_user(clients.store, user)
    return ContactsResponse(contacts=[UserPartialResponse.from_partial(c.to_partial()) for c in contacts])


@router.post("/{user_id}", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def add_contact(
    user_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    contact = await user_service.add_contact(clients.store, user, user_id)
    return ContactResponse(contact=UserPartialResponse.from_partial(contact.to_partial()))


@router.delete("/{user_id}", response_model=ContactResponse)
async def remove_contact(
    user_id: str, user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    contact = await user_service.remove_contact(clients.store, user, user_id)
    return ContactResponse(contact=UserPartialResponse.from_partial(contact.to_partial()))
