"""
Mapping from client records to OpenPhone contacts.

Naming convention:
- Main client: "James" (just the client name)
- Alternative contact: "James - Brother" (client name + relationship)

A client produces at most three contacts: the main contact and up to two
alternative contacts. Every contact carries exactly one validated,
standardized phone number. If the client's own phone is unusable, no
contact is produced at all, even when the alternative contacts have valid
phones.

The functions here are pure: same client and keys, same output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from openphone_sync.api.models import (
    ContactFields,
    ContactPayload,
    CustomField,
    EmailField,
    PhoneNumberField,
)
from openphone_sync.config.settings import CustomFieldKeys
from openphone_sync.storage.models import ClientRecord
from openphone_sync.utils.phone import is_valid_phone_number, standardize_phone_number

logger = logging.getLogger(__name__)

# Source tag written on every contact created by this integration
CONTACT_SOURCE = "legal-practitioner-app"

MAIN_COMPANY = "Legal Client"
ALTERNATIVE_COMPANY = "Legal Client Contact"

CRIMINAL = "criminal"
CIVIL = "civil"


class ContactRole(str, Enum):
    """Which of a client's contacts a MappedContact represents."""

    MAIN = "main"
    ALTERNATIVE_1 = "alternative_1"
    ALTERNATIVE_2 = "alternative_2"

    @classmethod
    def alternative(cls, number: int) -> ContactRole:
        return cls.ALTERNATIVE_1 if number == 1 else cls.ALTERNATIVE_2


@dataclass
class MappedContact:
    """
    An outbound contact derived from one client record.

    Attributes:
        payload: Request body sent to OpenPhone
        client_id: Id of the source client
        client_name: Name of the source client
        role: Main contact or alternative 1/2
    """

    payload: ContactPayload
    client_id: str
    client_name: str
    role: ContactRole

    @property
    def external_id(self) -> str:
        return self.payload.external_id or ""

    @property
    def display_name(self) -> str:
        return self.payload.default_fields.first_name or ""

    @property
    def phone_numbers(self) -> list[str]:
        return [p.value for p in self.payload.default_fields.phone_numbers]


def main_external_id(client_id: str) -> str:
    return f"client_{client_id}"


def alternative_external_id(client_id: str, number: int) -> str:
    return f"client_{client_id}_alt_{number}"


def _role_label(client_type: Optional[str]) -> str:
    return "Criminal Client" if client_type == CRIMINAL else "Civil Client"


def _main_custom_fields(
    client: ClientRecord, keys: CustomFieldKeys
) -> list[CustomField]:
    fields: list[CustomField] = []

    if keys.client_type and client.client_type:
        fields.append(CustomField("Client Type", keys.client_type, client.client_type))

    if keys.date_of_birth and client.date_of_birth:
        fields.append(
            CustomField("Date of Birth", keys.date_of_birth, client.date_of_birth, "date")
        )

    if keys.county and client.county:
        fields.append(CustomField("County", keys.county, client.county))

    if keys.intake_date and client.date_intake:
        fields.append(
            CustomField("Intake Date", keys.intake_date, client.date_intake, "date")
        )

    if client.client_type == CIVIL and keys.case_type and client.case_type:
        fields.append(CustomField("Case Type", keys.case_type, client.case_type))

    if client.client_type == CRIMINAL:
        if keys.arrested and client.arrested:
            fields.append(CustomField("Arrested", keys.arrested, "Yes"))
        if keys.currently_incarcerated and client.currently_incarcerated:
            fields.append(
                CustomField("Incarcerated", keys.currently_incarcerated, "Yes")
            )

    return fields


def _alternative_custom_fields(
    client: ClientRecord,
    number: int,
    contact_name: str,
    relationship: str,
    keys: CustomFieldKeys,
) -> list[CustomField]:
    fields: list[CustomField] = []

    if keys.primary_client_name:
        fields.append(
            CustomField("Client Name", keys.primary_client_name, client.client_name)
        )
    if keys.relationship:
        fields.append(
            CustomField("Relationship to Client", keys.relationship, relationship)
        )
    if keys.contact_person_name:
        fields.append(
            CustomField("Contact Person Name", keys.contact_person_name, contact_name)
        )
    if keys.client_type and client.client_type:
        fields.append(CustomField("Client Type", keys.client_type, client.client_type))
    if keys.alt_contact_number:
        fields.append(
            CustomField(
                "Alternative Contact Number", keys.alt_contact_number, str(number)
            )
        )

    return fields


def map_main_client(
    client: ClientRecord, keys: Optional[CustomFieldKeys] = None
) -> Optional[MappedContact]:
    """
    Map the client's own contact.

    Returns:
        The main MappedContact, or None when the client has no name or no
        usable phone number
    """
    keys = keys or CustomFieldKeys()

    if not client.client_name:
        logger.debug(f"Client {client.id} has no name, skipping")
        return None

    if not is_valid_phone_number(client.phone):
        logger.debug(
            f"Main client {client.client_name} - raw phone {client.phone!r} is invalid"
        )
        return None

    phone = standardize_phone_number(client.phone)
    if not phone:
        logger.debug(
            f"Main client {client.client_name} phone cannot be standardized: "
            f"{client.phone!r}"
        )
        return None

    fields = ContactFields(
        first_name=client.client_name,
        company=MAIN_COMPANY,
        role=_role_label(client.client_type),
        phone_numbers=[PhoneNumberField(value=phone, name="Main Phone")],
    )
    if client.email:
        fields.emails = [EmailField(value=client.email, name="Email")]

    payload = ContactPayload(
        default_fields=fields,
        custom_fields=_main_custom_fields(client, keys),
        external_id=main_external_id(client.id),
        source=CONTACT_SOURCE,
    )

    return MappedContact(
        payload=payload,
        client_id=client.id,
        client_name=client.client_name,
        role=ContactRole.MAIN,
    )


def map_alternative_contact(
    client: ClientRecord, number: int, keys: Optional[CustomFieldKeys] = None
) -> Optional[MappedContact]:
    """
    Map alternative contact 1 or 2.

    The alternative needs a name, a phone and a relationship, and the
    phone must be valid.

    Returns:
        The alternative MappedContact, or None when it cannot be built
    """
    keys = keys or CustomFieldKeys()
    contact_name, contact_phone, relationship = client.alternative(number)

    if not contact_name or not contact_phone or not relationship:
        return None

    if not is_valid_phone_number(contact_phone):
        logger.debug(
            f"Alternative contact {number} for {client.client_name} - raw phone "
            f"{contact_phone!r} is invalid"
        )
        return None

    phone = standardize_phone_number(contact_phone)
    if not phone:
        return None

    fields = ContactFields(
        first_name=f"{client.client_name} - {relationship}",
        company=ALTERNATIVE_COMPANY,
        role=f"Alternative Contact ({relationship})",
        phone_numbers=[PhoneNumberField(value=phone, name=f"{relationship} Phone")],
    )

    payload = ContactPayload(
        default_fields=fields,
        custom_fields=_alternative_custom_fields(
            client, number, contact_name, relationship, keys
        ),
        external_id=alternative_external_id(client.id, number),
        source=CONTACT_SOURCE,
    )

    return MappedContact(
        payload=payload,
        client_id=client.id,
        client_name=client.client_name,
        role=ContactRole.alternative(number),
    )


def map_client_to_contacts(
    client: ClientRecord, keys: Optional[CustomFieldKeys] = None
) -> list[MappedContact]:
    """
    Map a client to all of its OpenPhone contacts, main contact first.

    Args:
        client: Client record to map
        keys: Custom field keys; fields without a key are omitted

    Returns:
        List of MappedContact (empty when the main contact cannot be built)
    """
    main = map_main_client(client, keys)
    if main is None:
        logger.info(
            f"Skipping client {client.client_name} and all alternative contacts "
            f"due to missing or invalid main phone number"
        )
        return []

    contacts = [main]
    for number in (1, 2):
        alternative = map_alternative_contact(client, number, keys)
        if alternative is not None:
            contacts.append(alternative)

    return contacts


def validate_mapped_contact(contact: MappedContact) -> list[str]:
    """
    Check a mapped contact before it is sent.

    Returns:
        List of problems; empty when the contact can be sent
    """
    errors: list[str] = []
    fields = contact.payload.default_fields

    if not fields.first_name:
        errors.append("Contact name is required")

    if not fields.phone_numbers:
        errors.append("At least one phone number is required")

    for phone in fields.phone_numbers:
        if not is_valid_phone_number(phone.value):
            errors.append(f"Invalid phone number: {phone.value}")

    for custom_field in contact.payload.custom_fields:
        if not custom_field.name or not custom_field.key:
            errors.append("Custom field name and key are required")

    return errors
